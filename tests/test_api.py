import json
from datetime import timedelta

from fastapi.testclient import TestClient

from ambulatorio import appointments
from ambulatorio.api_main import create_app
from ambulatorio.models import utcnow
from ambulatorio.payments import FixedPaymentGateway

from .conftest import PASSWORD


def _when(days=2):
    return (utcnow() + timedelta(days=days)).isoformat()


def _error(resp, status, kind):
    assert resp.status_code == status, resp.text
    body = resp.json()
    assert body["error"]["kind"] == kind
    assert body["error"]["message"]
    return body


# =========================
# Auth
# =========================
def test_register_login_me(client):
    r = client.post(
        "/api/auth/register",
        json={"first_name": "Nina", "last_name": "Gialli", "email": "Nina@Test.local", "password": "pw12345"},
    )
    assert r.status_code == 201
    assert r.json()["role"] == "PATIENT"
    assert r.json()["email"] == "nina@test.local"

    r = client.post("/api/auth/login", data={"username": "nina@test.local", "password": "pw12345"})
    assert r.status_code == 200
    token = r.json()["access_token"]

    me = client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["first_name"] == "Nina"


def test_register_duplicate_email(client, patient):
    r = client.post(
        "/api/auth/register",
        json={"first_name": "A", "last_name": "B", "email": patient.email, "password": "pw"},
    )
    _error(r, 409, "conflict")


def test_login_wrong_password(client, patient):
    r = client.post("/api/auth/login", data={"username": patient.email, "password": "wrong"})
    _error(r, 401, "unauthorized")


def test_missing_or_bad_token(client):
    _error(client.get("/api/me"), 401, "unauthorized")
    _error(client.get("/api/me", headers={"Authorization": "Bearer not-a-token"}), 401, "unauthorized")


def test_admin_creates_doctor(client, admin, patient, auth):
    payload = {
        "first_name": "Luca",
        "last_name": "Blu",
        "email": "luca@test.local",
        "password": PASSWORD,
        "role": "DOCTOR",
        "specialization": "Dermatologia",
    }
    _error(client.post("/api/users", json=payload, headers=auth(patient)), 403, "permission_denied")

    r = client.post("/api/users", json=payload, headers=auth(admin))
    assert r.status_code == 201
    doctors = client.get("/api/public/doctors").json()
    assert [d["specialization"] for d in doctors] == ["Dermatologia"]


# =========================
# Envelope errori
# =========================
def test_unknown_appointment_is_not_found(client, admin, auth):
    _error(client.get("/api/appointments/missing", headers=auth(admin)), 404, "not_found")


def test_public_appointment_validation_envelope(client, doctor):
    body = _error(client.post("/api/public/appointments", json={"doctor_id": doctor.id}), 400, "validation_error")
    assert "patient_id" in body["error"]["message"]


def test_public_appointment_invalid_doctor(client, patient):
    payload = {"doctor_id": patient.id, "patient_id": patient.id, "title": "x", "appointment_date_time": _when()}
    _error(client.post("/api/public/appointments", json=payload), 400, "validation_error")


def test_simple_appointment_anonymous_and_logged_in(client, doctor, patient, other_patient, auth):
    payload = {"doctor_id": doctor.id, "title": "Visita", "appointment_date_time": _when()}

    _error(client.post("/api/appointments/simple", json=payload), 400, "validation_error")

    r = client.post("/api/appointments/simple", json={**payload, "patient_id": patient.id})
    assert r.status_code == 201
    assert r.json()["patient_id"] == patient.id

    r = client.post(
        "/api/appointments/simple",
        json={**payload, "patient_id": patient.id},
        headers=auth(other_patient),
    )
    assert r.json()["patient_id"] == other_patient.id


def test_client_supplied_status_is_ignored(client, doctor, patient, auth):
    payload = {"doctor_id": doctor.id, "title": "Visita", "appointment_date_time": _when(), "status": "APPROVED"}
    r = client.post("/api/appointments", json=payload, headers=auth(patient))

    assert r.status_code == 201
    assert r.json()["status"] == "PENDING"


def test_patient_cannot_confirm(client, appointment, patient, auth):
    _error(client.put(f"/api/appointments/{appointment.id}/confirm", headers=auth(patient)), 403, "permission_denied")


def test_failed_payment_is_402(settings, db, appointment, patient, auth, knowledge, chat_api, storage):
    app = create_app(
        settings, payment_gateway=FixedPaymentGateway(False), knowledge=knowledge, chat_api=chat_api, storage=storage
    )
    with TestClient(app) as c:
        r = c.post(
            "/api/payments/process",
            json={"appointmentId": appointment.id, "amount": 50, "paymentMethod": "card"},
            headers=auth(patient),
        )
        _error(r, 402, "payment_failed")

        pending = c.get("/api/payments/pending", headers=auth(patient)).json()
        assert pending[0]["payment_notes"] == "Payment failed - please try again"


def test_unexpected_error_is_generic_500(settings, db, admin, auth, gateway, knowledge, chat_api, storage, monkeypatch):
    def broken(actor):
        raise ZeroDivisionError("division by zero")

    monkeypatch.setattr(appointments, "list_all", broken)
    app = create_app(settings, payment_gateway=gateway, knowledge=knowledge, chat_api=chat_api, storage=storage)
    with TestClient(app, raise_server_exceptions=False) as c:
        r = c.get("/api/appointments", headers=auth(admin))

    assert r.status_code == 500
    assert r.json() == {"error": {"kind": "internal_error", "message": "Internal server error"}}


# =========================
# Scenario completo
# =========================
def test_full_appointment_payment_refund_scenario(client, doctor, patient, auth):
    r = client.post(
        "/api/appointments",
        json={"doctor_id": doctor.id, "title": "Checkup", "appointment_date_time": _when()},
        headers=auth(patient),
    )
    assert r.status_code == 201
    app = r.json()
    assert app["status"] == "PENDING"

    notes = client.get("/api/notifications", headers=auth(doctor)).json()
    assert [(n["type"], n["user_id"]) for n in notes] == [("APPOINTMENT_REQUESTED", doctor.id)]
    assert client.get("/api/notifications/count-unread", headers=auth(doctor)).json() == {"count": 1}

    r = client.put(f"/api/appointments/{app['id']}/confirm", headers=auth(doctor))
    assert r.json()["status"] == "APPROVED"

    r = client.post(
        "/api/payments/process",
        json={"appointment_id": app["id"], "amount": 50, "payment_method": "card"},
        headers=auth(patient),
    )
    assert r.status_code == 200
    assert r.json()["payment_status"] == "PAID"
    assert r.json()["payment_reference"].startswith("PAY_")
    history = client.get("/api/payments/history", headers=auth(patient)).json()
    assert [h["id"] for h in history] == [app["id"]]

    r = client.post(f"/api/payments/{app['id']}/refund", headers=auth(doctor))
    assert r.json()["payment_status"] == "REFUNDED"
    assert r.json()["status"] == "APPROVED"

    r = client.put("/api/notifications/mark-all-read", headers=auth(patient))
    assert r.json() == {"count": 1}
    assert client.get("/api/notifications/unread", headers=auth(patient)).json() == []


def test_reject_with_reason_over_http(client, appointment, doctor, patient, auth):
    r = client.put(f"/api/appointments/{appointment.id}/reject", json={"reason": "Ferie"}, headers=auth(doctor))

    assert r.json()["status"] == "CANCELLED"
    assert r.json()["rejection_reason"] == "Ferie"
    _error(
        client.put(f"/api/appointments/{appointment.id}/confirm", headers=auth(doctor)),
        409,
        "conflict",
    )


def test_other_users_notification_forbidden(client, appointment, doctor, patient, auth):
    note = client.get("/api/notifications", headers=auth(doctor)).json()[0]
    _error(client.get(f"/api/notifications/{note['id']}", headers=auth(patient)), 403, "permission_denied")

    r = client.put(f"/api/notifications/{note['id']}/mark-read", headers=auth(doctor))
    assert r.json()["is_read"] is True


# =========================
# Chatbot
# =========================
def test_chatbot_over_http(client, patient, other_patient, auth, knowledge):
    assert client.get("/api/chatbot/config").json() == {
        "disclaimers": ["Not medical advice."],
        "medical_sources": ["MedlinePlus", "Health.gov"],
    }

    session = client.post("/api/chatbot/sessions", headers=auth(patient)).json()
    r = client.post(
        f"/api/chatbot/sessions/{session['id']}/messages",
        json={"content": "I have a fever"},
        headers=auth(patient),
    )
    assert r.status_code == 200
    assert "DISCLAIMER" in r.json()["response"]
    assert knowledge.queries == ["I have a fever"]

    detail = client.get(f"/api/chatbot/sessions/{session['id']}", headers=auth(patient)).json()
    assert [m["sender"] for m in detail["messages"]] == ["USER", "BOT"]
    _error(client.get(f"/api/chatbot/sessions/{session['id']}", headers=auth(other_patient)), 403, "permission_denied")

    r = client.post(f"/api/chatbot/sessions/{session['id']}/end", headers=auth(patient))
    assert r.json()["is_active"] is False
    r = client.post(
        f"/api/chatbot/sessions/{session['id']}/messages",
        json={"content": "hello"},
        headers=auth(patient),
    )
    _error(r, 409, "conflict")


# =========================
# Referti
# =========================
def test_lab_report_upload_and_download(client, doctor, patient, other_patient, auth):
    data = {"lab_report": json.dumps({"patient_id": patient.id, "test_name": "Glicemia"})}
    files = {"file": ("glicemia.pdf", b"%PDF-1.4 data", "application/pdf")}

    _error(client.post("/api/lab-reports", data=data, files=files, headers=auth(patient)), 403, "permission_denied")

    r = client.post("/api/lab-reports", data=data, files=files, headers=auth(doctor))
    assert r.status_code == 201, r.text
    report = r.json()
    assert report["file_name"] == "glicemia.pdf"

    r = client.get(f"/api/lab-reports/{report['id']}/download", headers=auth(patient))
    assert r.status_code == 200
    assert r.content == b"%PDF-1.4 data"
    assert r.headers["content-type"] == "application/pdf"

    _error(
        client.get(f"/api/lab-reports/{report['id']}/download", headers=auth(other_patient)),
        403,
        "permission_denied",
    )


def test_lab_report_rejects_unsupported_file(client, doctor, patient, auth):
    data = {"lab_report": json.dumps({"patient_id": patient.id, "test_name": "Glicemia"})}
    files = {"file": ("note.txt", b"text", "text/plain")}

    _error(client.post("/api/lab-reports", data=data, files=files, headers=auth(doctor)), 400, "validation_error")
    _error(client.post("/api/lab-reports", data={"lab_report": "{bad"}, headers=auth(doctor)), 400, "validation_error")


def test_medical_record_endpoints(client, doctor, patient, auth):
    r = client.post("/api/medical-records", json={"patient_id": patient.id, "diagnosis": "Asma"}, headers=auth(doctor))
    assert r.status_code == 201
    record_id = r.json()["id"]

    mine = client.get("/api/medical-records", headers=auth(patient)).json()
    assert [m["id"] for m in mine] == [record_id]

    r = client.post(
        "/api/prescriptions",
        json={"medical_record_id": record_id, "medication_name": "Salbutamolo"},
        headers=auth(doctor),
    )
    assert r.status_code == 201
    assert client.get("/api/prescriptions", headers=auth(patient)).json()[0]["medication_name"] == "Salbutamolo"

    r = client.delete(f"/api/medical-records/{record_id}", headers=auth(doctor))
    assert r.status_code == 204
    assert client.get("/api/prescriptions", headers=auth(doctor)).json() == []
