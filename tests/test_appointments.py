from datetime import datetime, timedelta, timezone

import pytest

from ambulatorio import notifications
from ambulatorio.appointments import (
    AppointmentChanges,
    AppointmentDraft,
    DEFAULT_REJECTION_REASON,
    cancel_appointment,
    complete_appointment,
    confirm_appointment,
    create_appointment,
    delete_appointment,
    get_appointment,
    list_all,
    list_by_date_range,
    list_for_doctor,
    my_appointments,
    my_upcoming_appointments,
    reject_appointment,
    update_appointment,
)
from ambulatorio.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from ambulatorio.models import AppointmentStatus, NotificationType, PaymentStatus, utcnow
from ambulatorio.users import actor_for


def _draft(doctor_id, patient_id=None, when=None, title="Visita"):
    return AppointmentDraft(
        doctor_id=doctor_id,
        patient_id=patient_id,
        appointment_date_time=when or utcnow() + timedelta(days=1),
        title=title,
    )


# =========================
# Creazione
# =========================
def test_create_as_patient_forces_acting_patient(doctor, patient, other_patient, patient_actor):
    app = create_appointment(_draft(doctor.id, patient_id=other_patient.id), patient_actor)

    assert app.patient_id == patient.id
    assert app.status is AppointmentStatus.PENDING
    assert app.payment_status is PaymentStatus.UNPAID
    assert app.is_video_consultation is False


def test_create_notifies_doctor(appointment, doctor, patient):
    notes = notifications.list_for_user(doctor.id)

    assert len(notes) == 1
    assert notes[0].type is NotificationType.APPOINTMENT_REQUESTED
    assert notes[0].related_appointment_id == appointment.id
    assert notifications.list_for_user(patient.id) == []


def test_create_by_doctor_requires_patient(doctor, doctor_actor):
    with pytest.raises(ValidationError, match="Patient ID is required"):
        create_appointment(_draft(doctor.id), doctor_actor)


def test_create_rejects_unknown_or_wrong_role_doctor(patient, other_patient, patient_actor):
    with pytest.raises(ValidationError, match="Invalid doctor ID"):
        create_appointment(_draft("missing"), patient_actor)
    with pytest.raises(ValidationError, match="Invalid doctor ID"):
        create_appointment(_draft(other_patient.id), patient_actor)
    with pytest.raises(ValidationError, match="Doctor ID is required"):
        create_appointment(_draft(None), patient_actor)


def test_create_requires_title_and_datetime(doctor, patient_actor):
    with pytest.raises(ValidationError, match="Title"):
        create_appointment(_draft(doctor.id, title="  "), patient_actor)
    draft = AppointmentDraft(doctor_id=doctor.id, patient_id=None, appointment_date_time=None, title="x")
    with pytest.raises(ValidationError, match="date/time"):
        create_appointment(draft, patient_actor)


def test_create_stores_aware_datetime_as_naive_utc(doctor, patient_actor):
    when = datetime(2030, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    app = create_appointment(_draft(doctor.id, when=when), patient_actor)

    assert app.appointment_date_time == datetime(2030, 5, 1, 10, 0)


def test_anonymous_create_with_patient_id(doctor, patient):
    app = create_appointment(_draft(doctor.id, patient_id=patient.id))

    assert app.patient_id == patient.id
    assert app.status is AppointmentStatus.PENDING


# =========================
# Transizioni
# =========================
def test_confirm_as_patient_is_denied(appointment, patient_actor):
    with pytest.raises(PermissionDeniedError):
        confirm_appointment(appointment.id, patient_actor)

    assert get_appointment(appointment.id, patient_actor).status is AppointmentStatus.PENDING


def test_confirm_as_doctor_approves_and_notifies_patient(appointment, doctor_actor, patient):
    app = confirm_appointment(appointment.id, doctor_actor)

    assert app.status is AppointmentStatus.APPROVED
    types = [n.type for n in notifications.list_for_user(patient.id)]
    assert types == [NotificationType.APPOINTMENT_CONFIRMED]


def test_confirm_as_admin(appointment, admin_actor):
    assert confirm_appointment(appointment.id, admin_actor).status is AppointmentStatus.APPROVED


def test_confirm_twice_conflicts(appointment, doctor_actor):
    confirm_appointment(appointment.id, doctor_actor)
    with pytest.raises(ConflictError):
        confirm_appointment(appointment.id, doctor_actor)


def test_confirm_unknown_appointment(db, doctor_actor):
    with pytest.raises(NotFoundError):
        confirm_appointment("nope", doctor_actor)


def test_reject_stores_reason_and_notifies(appointment, doctor_actor, patient):
    app = reject_appointment(appointment.id, doctor_actor, "Doctor unavailable")

    assert app.status is AppointmentStatus.CANCELLED
    assert app.rejection_reason == "Doctor unavailable"
    note = notifications.list_for_user(patient.id)[0]
    assert note.type is NotificationType.APPOINTMENT_REJECTED
    assert "Doctor unavailable" in note.message


def test_reject_default_reason(appointment, doctor_actor):
    assert reject_appointment(appointment.id, doctor_actor).rejection_reason == DEFAULT_REJECTION_REASON


def test_reject_approved_conflicts(appointment, doctor_actor):
    confirm_appointment(appointment.id, doctor_actor)
    with pytest.raises(ConflictError):
        reject_appointment(appointment.id, doctor_actor, "late")


def test_complete_from_pending_and_approved(doctor, patient, patient_actor, doctor_actor):
    a = create_appointment(_draft(doctor.id), patient_actor)
    b = create_appointment(_draft(doctor.id), patient_actor)
    confirm_appointment(b.id, doctor_actor)

    assert complete_appointment(a.id, doctor_actor).status is AppointmentStatus.COMPLETED
    assert complete_appointment(b.id, doctor_actor).status is AppointmentStatus.COMPLETED


def test_complete_requires_own_doctor(appointment, other_doctor):
    with pytest.raises(PermissionDeniedError):
        complete_appointment(appointment.id, actor_for(other_doctor))


@pytest.mark.parametrize("terminal", ["reject", "complete"])
def test_no_transition_out_of_terminal_states(appointment, doctor_actor, patient_actor, terminal):
    if terminal == "reject":
        reject_appointment(appointment.id, doctor_actor)
    else:
        complete_appointment(appointment.id, doctor_actor)

    with pytest.raises(ConflictError):
        confirm_appointment(appointment.id, doctor_actor)
    with pytest.raises(ConflictError):
        complete_appointment(appointment.id, doctor_actor)
    with pytest.raises(ConflictError):
        cancel_appointment(appointment.id, patient_actor)


def test_cancel_by_patient_notifies_doctor(appointment, patient_actor, doctor):
    app = cancel_appointment(appointment.id, patient_actor, "Impegno di lavoro")

    assert app.status is AppointmentStatus.CANCELLED
    cancelled = [n for n in notifications.list_for_user(doctor.id) if n.type is NotificationType.APPOINTMENT_CANCELLED]
    assert len(cancelled) == 1
    assert "Impegno di lavoro" in cancelled[0].message


def test_cancel_approved_conflicts(appointment, doctor_actor, patient_actor):
    confirm_appointment(appointment.id, doctor_actor)
    with pytest.raises(ConflictError):
        cancel_appointment(appointment.id, patient_actor)


def test_cancel_by_stranger_denied(appointment, other_patient):
    with pytest.raises(PermissionDeniedError):
        cancel_appointment(appointment.id, actor_for(other_patient))


# =========================
# Update / delete
# =========================
def test_update_changes_descriptive_fields_only(appointment, patient_actor):
    app = update_appointment(appointment.id, AppointmentChanges(title="Controllo", notes="digiuno"), patient_actor)

    assert app.title == "Controllo"
    assert app.notes == "digiuno"
    assert app.status is AppointmentStatus.PENDING
    assert app.payment_status is PaymentStatus.UNPAID


def test_update_other_patients_appointment_denied(appointment, other_patient, other_doctor):
    with pytest.raises(PermissionDeniedError):
        update_appointment(appointment.id, AppointmentChanges(title="x"), actor_for(other_patient))
    with pytest.raises(PermissionDeniedError):
        update_appointment(appointment.id, AppointmentChanges(title="x"), actor_for(other_doctor))


def test_update_terminal_conflicts(appointment, doctor_actor, admin_actor):
    complete_appointment(appointment.id, doctor_actor)
    with pytest.raises(ConflictError):
        update_appointment(appointment.id, AppointmentChanges(title="x"), admin_actor)


def test_delete_keeps_notifications_without_reference(appointment, doctor, doctor_actor, patient_actor):
    with pytest.raises(PermissionDeniedError):
        delete_appointment(appointment.id, patient_actor)

    delete_appointment(appointment.id, doctor_actor)

    with pytest.raises(NotFoundError):
        get_appointment(appointment.id, doctor_actor)
    notes = notifications.list_for_user(doctor.id)
    assert len(notes) == 1
    assert notes[0].related_appointment_id is None


# =========================
# Query
# =========================
def test_get_appointment_visibility(appointment, patient_actor, doctor_actor, admin_actor, other_patient):
    for actor in (patient_actor, doctor_actor, admin_actor):
        assert get_appointment(appointment.id, actor).id == appointment.id
    with pytest.raises(PermissionDeniedError):
        get_appointment(appointment.id, actor_for(other_patient))


def test_list_all_admin_only(appointment, admin_actor, doctor_actor):
    assert [a.id for a in list_all(admin_actor)] == [appointment.id]
    with pytest.raises(PermissionDeniedError):
        list_all(doctor_actor)


def test_my_upcoming_is_strictly_future_and_sorted(doctor, patient_actor):
    now = utcnow()
    past = create_appointment(_draft(doctor.id, when=now - timedelta(hours=1)), patient_actor)
    later = create_appointment(_draft(doctor.id, when=now + timedelta(days=3)), patient_actor)
    sooner = create_appointment(_draft(doctor.id, when=now + timedelta(days=1)), patient_actor)

    assert [a.id for a in my_upcoming_appointments(patient_actor)] == [sooner.id, later.id]
    assert {a.id for a in my_appointments(patient_actor)} == {past.id, later.id, sooner.id}


def test_date_range_scoped_to_actor(doctor, patient_actor, other_patient, admin_actor):
    base = utcnow() + timedelta(days=10)
    mine = create_appointment(_draft(doctor.id, when=base), patient_actor)
    theirs = create_appointment(_draft(doctor.id, when=base), actor_for(other_patient))

    start, end = base - timedelta(hours=1), base + timedelta(hours=1)
    assert [a.id for a in list_by_date_range(start, end, patient_actor)] == [mine.id]
    assert {a.id for a in list_by_date_range(start, end, admin_actor)} == {mine.id, theirs.id}
    with pytest.raises(ValidationError):
        list_by_date_range(end, start, admin_actor)


def test_list_for_doctor_permissions(appointment, doctor, doctor_actor, other_doctor, admin_actor):
    assert [a.id for a in list_for_doctor(doctor.id, doctor_actor)] == [appointment.id]
    assert [a.id for a in list_for_doctor(doctor.id, admin_actor)] == [appointment.id]
    with pytest.raises(PermissionDeniedError):
        list_for_doctor(doctor.id, actor_for(other_doctor))
