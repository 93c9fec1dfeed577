"""
Fixture comuni:
- database SQLite temporaneo per ogni test
- utenti per ruolo (admin, medici, pazienti)
- collaboratori esterni finti (knowledge, chat API)
- TestClient con esito dei pagamenti deterministico
"""
from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from ambulatorio.api_main import create_app
from ambulatorio.appointments import AppointmentDraft, create_appointment
from ambulatorio.auth_security import create_access_token
from ambulatorio.config import Settings
from ambulatorio.db import configure_engine, init_db
from ambulatorio.models import Role, utcnow
from ambulatorio.payments import FixedPaymentGateway
from ambulatorio.storage import FileStorage
from ambulatorio.users import actor_for, create_user

PASSWORD = "secret-pass"


class FakeKnowledge:
    def __init__(self, result: dict | None = None, error: Exception | None = None) -> None:
        self.result = result or {
            "medlinePlus": {
                "results": [
                    {"title": "Headache", "summary": "Pain in the head.", "url": "https://medlineplus.gov/headache"},
                    {"title": "Migraine", "summary": "", "url": ""},
                    {"title": "Tension headache", "summary": "", "url": ""},
                    {"title": "Cluster headache", "summary": "", "url": ""},
                ]
            },
            "healthGov": {"results": [{"title": "Stay healthy", "description": "Sleep well.", "url": ""}]},
            "sources": ["MedlinePlus", "Health.gov"],
            "disclaimers": [],
        }
        self.error = error
        self.queries: list[str] = []

    def search(self, query: str) -> dict:
        self.queries.append(query)
        if self.error:
            raise self.error
        return self.result


class FakeChat:
    def __init__(self, answer: str | None = "Hello from the chat API", error: Exception | None = None) -> None:
        self.answer = answer
        self.error = error
        self.calls: list[tuple[str, int]] = []

    def ask(self, message: str, session_id: int) -> str | None:
        self.calls.append((message, session_id))
        if self.error:
            raise self.error
        return self.answer


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.sqlite'}",
        jwt_secret="test-secret",
        log_level="WARNING",
        upload_dir=str(tmp_path / "uploads"),
        disclaimers=("Not medical advice.",),
        medical_sources=("MedlinePlus", "Health.gov"),
    )


@pytest.fixture
def db(settings):
    configure_engine(settings.database_url)
    init_db()
    yield


@pytest.fixture
def admin(db):
    return create_user("Ada", "Admin", "admin@test.local", PASSWORD, role=Role.ADMIN)


@pytest.fixture
def doctor(db):
    return create_user("Mario", "Rossi", "doctor@test.local", PASSWORD, role=Role.DOCTOR, specialization="Cardiologia")


@pytest.fixture
def other_doctor(db):
    return create_user("Laura", "Bianchi", "doctor2@test.local", PASSWORD, role=Role.DOCTOR)


@pytest.fixture
def patient(db):
    return create_user("Giulia", "Verdi", "patient@test.local", PASSWORD, role=Role.PATIENT)


@pytest.fixture
def other_patient(db):
    return create_user("Paolo", "Neri", "patient2@test.local", PASSWORD, role=Role.PATIENT)


@pytest.fixture
def admin_actor(admin):
    return actor_for(admin)


@pytest.fixture
def doctor_actor(doctor):
    return actor_for(doctor)


@pytest.fixture
def patient_actor(patient):
    return actor_for(patient)


@pytest.fixture
def appointment(doctor, patient, patient_actor):
    """Appuntamento PENDING richiesto dal paziente, fra due giorni."""
    return create_appointment(
        AppointmentDraft(
            doctor_id=doctor.id,
            patient_id=None,
            appointment_date_time=utcnow() + timedelta(days=2),
            title="Checkup",
        ),
        patient_actor,
    )


@pytest.fixture
def storage(settings) -> FileStorage:
    return FileStorage(settings.upload_dir)


@pytest.fixture
def knowledge() -> FakeKnowledge:
    return FakeKnowledge()


@pytest.fixture
def chat_api() -> FakeChat:
    return FakeChat()


@pytest.fixture
def gateway() -> FixedPaymentGateway:
    return FixedPaymentGateway(True)


@pytest.fixture
def client(settings, db, gateway, knowledge, chat_api, storage):
    app = create_app(settings, payment_gateway=gateway, knowledge=knowledge, chat_api=chat_api, storage=storage)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth(settings):
    """Header Authorization per un utente."""

    def _headers(user) -> dict[str, str]:
        token = create_access_token(subject=user.id, settings=settings, extra={"role": user.role.value})
        return {"Authorization": f"Bearer {token}"}

    return _headers
