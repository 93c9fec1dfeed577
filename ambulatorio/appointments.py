from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import datetime

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from .db import db_session
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from .models import (
    Appointment,
    AppointmentStatus,
    Notification,
    NotificationType,
    PaymentStatus,
    Role,
    User,
    naive_utc,
    utcnow,
)
from .notifications import emit
from .users import Actor, require_role, resolve_user

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "No reason provided"

# Transizioni ammesse: CANCELLED e COMPLETED sono terminali
TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.APPROVED, AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED}
    ),
    AppointmentStatus.APPROVED: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
}


# =========================
# Helper / DTO
# =========================
@dataclass(frozen=True)
class AppointmentDraft:
    """Dati di una nuova prenotazione, già tipizzati dal layer REST."""
    doctor_id: str | None
    patient_id: str | None
    appointment_date_time: datetime | None
    title: str | None
    description: str | None = None
    notes: str | None = None
    is_video_consultation: bool | None = None
    meeting_link: str | None = None


@dataclass(frozen=True)
class AppointmentChanges:
    """Campi descrittivi modificabili con update; None = invariato."""
    title: str | None = None
    description: str | None = None
    notes: str | None = None
    appointment_date_time: datetime | None = None
    is_video_consultation: bool | None = None
    meeting_link: str | None = None


def _fmt(dt: datetime) -> str:
    return dt.strftime("%d/%m/%Y %H:%M")


def _get(s: Session, appointment_id: str) -> Appointment:
    app = s.get(Appointment, appointment_id)
    if not app:
        raise NotFoundError(f"Appointment not found with id: {appointment_id}")
    return app


def _is_participant(app: Appointment, actor: Actor) -> bool:
    return actor.id in (app.patient_id, app.doctor_id)


def _move(app: Appointment, target: AppointmentStatus) -> None:
    if target not in TRANSITIONS[app.status]:
        raise ConflictError(f"Cannot move appointment from {app.status.value} to {target.value}")
    app.status = target
    app.updated_at = utcnow()


# =========================
# Creazione (use case core)
# =========================
def create_appointment(draft: AppointmentDraft, actor: Actor | None = None) -> Appointment:
    """
    Use case: Richiedere appuntamento.
    - il medico deve esistere (ruolo DOCTOR)
    - se l'attore è un paziente, il paziente è sempre l'attore stesso
    - medici/admin (o richieste pubbliche, actor=None) indicano il paziente
    - stato iniziale PENDING, pagamento UNPAID
    - notifica APPOINTMENT_REQUESTED al medico
    """
    with db_session() as s:
        doctor = resolve_user(s, draft.doctor_id, Role.DOCTOR, "Doctor")

        if actor is not None and actor.is_patient:
            patient = s.get(User, actor.id)
            if not patient:
                raise ValidationError(f"Invalid patient ID: {actor.id}")
        else:
            patient = resolve_user(s, draft.patient_id, Role.PATIENT, "Patient")

        title = (draft.title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if draft.appointment_date_time is None:
            raise ValidationError("Appointment date/time is required")

        now = utcnow()
        app = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            appointment_date_time=naive_utc(draft.appointment_date_time),
            title=title,
            description=draft.description,
            notes=draft.notes,
            status=AppointmentStatus.PENDING,
            is_video_consultation=bool(draft.is_video_consultation),
            meeting_link=draft.meeting_link,
            payment_status=PaymentStatus.UNPAID,
            created_at=now,
            updated_at=now,
        )
        s.add(app)
        s.flush()

        emit(
            s,
            user_id=doctor.id,
            title="New Appointment Request",
            message=(
                f"{patient.first_name} {patient.last_name} requested '{title}' "
                f"for {_fmt(app.appointment_date_time)}."
            ),
            type_=NotificationType.APPOINTMENT_REQUESTED,
            related_appointment_id=app.id,
        )

        logger.info("appointment %s requested (doctor=%s, patient=%s)", app.id, doctor.id, patient.id)
        return app


# =========================
# Transizioni di stato
# =========================
def confirm_appointment(appointment_id: str, actor: Actor) -> Appointment:
    """PENDING -> APPROVED, notifica APPOINTMENT_CONFIRMED al paziente."""
    require_role(actor, Role.DOCTOR, Role.ADMIN)

    with db_session() as s:
        app = _get(s, appointment_id)
        _move(app, AppointmentStatus.APPROVED)
        s.flush()

        emit(
            s,
            user_id=app.patient_id,
            title="Appointment Confirmed",
            message=f"Your appointment '{app.title}' on {_fmt(app.appointment_date_time)} has been confirmed.",
            type_=NotificationType.APPOINTMENT_CONFIRMED,
            related_appointment_id=app.id,
        )

        logger.info("appointment %s confirmed by %s", app.id, actor.id)
        return app


def reject_appointment(appointment_id: str, actor: Actor, reason: str | None = None) -> Appointment:
    """PENDING -> CANCELLED con motivo, notifica APPOINTMENT_REJECTED al paziente."""
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    reason = (reason or "").strip() or DEFAULT_REJECTION_REASON

    with db_session() as s:
        app = _get(s, appointment_id)
        if app.status is not AppointmentStatus.PENDING:
            raise ConflictError(f"Only pending appointments can be rejected (status: {app.status.value})")
        _move(app, AppointmentStatus.CANCELLED)
        app.rejection_reason = reason
        s.flush()

        emit(
            s,
            user_id=app.patient_id,
            title="Appointment Rejected",
            message=f"Your appointment '{app.title}' on {_fmt(app.appointment_date_time)} was rejected. Reason: {reason}",
            type_=NotificationType.APPOINTMENT_REJECTED,
            related_appointment_id=app.id,
        )

        logger.info("appointment %s rejected by %s", app.id, actor.id)
        return app


def cancel_appointment(appointment_id: str, actor: Actor, reason: str | None = None) -> Appointment:
    """
    Use case: Annullare una richiesta ancora PENDING.
    Ammesso per paziente e medico dell'appuntamento, o admin.
    Notifica APPOINTMENT_CANCELLED alla controparte.
    """
    with db_session() as s:
        app = _get(s, appointment_id)
        if not actor.is_admin and not _is_participant(app, actor):
            raise PermissionDeniedError("You can only cancel your own appointments")
        if app.status is not AppointmentStatus.PENDING:
            raise ConflictError(f"Only pending appointments can be cancelled (status: {app.status.value})")
        _move(app, AppointmentStatus.CANCELLED)
        s.flush()

        detail = f" Reason: {reason.strip()}" if reason and reason.strip() else ""
        recipients = [app.doctor_id] if actor.id == app.patient_id else [app.patient_id]
        if actor.is_admin:
            recipients = [app.patient_id, app.doctor_id]
        for user_id in recipients:
            emit(
                s,
                user_id=user_id,
                title="Appointment Cancelled",
                message=f"Appointment '{app.title}' on {_fmt(app.appointment_date_time)} was cancelled.{detail}",
                type_=NotificationType.APPOINTMENT_CANCELLED,
                related_appointment_id=app.id,
            )

        logger.info("appointment %s cancelled by %s", app.id, actor.id)
        return app


def complete_appointment(appointment_id: str, actor: Actor) -> Appointment:
    """PENDING/APPROVED -> COMPLETED, solo il medico dell'appuntamento o admin."""
    require_role(actor, Role.DOCTOR, Role.ADMIN)

    with db_session() as s:
        app = _get(s, appointment_id)
        if actor.is_doctor and app.doctor_id != actor.id:
            raise PermissionDeniedError("Only the appointment's doctor can complete it")
        _move(app, AppointmentStatus.COMPLETED)

        logger.info("appointment %s completed by %s", app.id, actor.id)
        return app


# =========================
# Modifica / cancellazione
# =========================
def update_appointment(appointment_id: str, changes: AppointmentChanges, actor: Actor) -> Appointment:
    """
    Modifica i soli campi descrittivi. Stato e pagamento passano solo
    dalle transizioni dedicate.
    - admin: qualsiasi appuntamento
    - medico/paziente: solo i propri
    """
    with db_session() as s:
        app = _get(s, appointment_id)
        if actor.is_doctor and app.doctor_id != actor.id:
            raise PermissionDeniedError("You can only update your own appointments")
        if actor.is_patient and app.patient_id != actor.id:
            raise PermissionDeniedError("You can only update your own appointments")
        if not TRANSITIONS[app.status]:
            raise ConflictError(f"Cannot update a {app.status.value} appointment")

        for f in fields(changes):
            value = getattr(changes, f.name)
            if value is None:
                continue
            if f.name == "title":
                value = value.strip()
                if not value:
                    raise ValidationError("Title is required")
            if f.name == "appointment_date_time":
                value = naive_utc(value)
            setattr(app, f.name, value)

        app.updated_at = utcnow()
        logger.info("appointment %s updated by %s", app.id, actor.id)
        return app


def delete_appointment(appointment_id: str, actor: Actor) -> None:
    """Cancellazione fisica (solo medico/admin). Le notifiche restano, senza riferimento."""
    require_role(actor, Role.DOCTOR, Role.ADMIN)

    with db_session() as s:
        app = _get(s, appointment_id)
        s.execute(
            update(Notification)
            .where(Notification.related_appointment_id == app.id)
            .values(related_appointment_id=None)
        )
        s.delete(app)
        logger.info("appointment %s deleted by %s", appointment_id, actor.id)


# =========================
# Query utili
# =========================
def get_appointment(appointment_id: str, actor: Actor) -> Appointment:
    with db_session() as s:
        app = _get(s, appointment_id)
        if not actor.is_admin and not _is_participant(app, actor):
            raise PermissionDeniedError("You can only view your own appointments")
        return app


def _scope(q, actor: Actor):
    if actor.is_doctor:
        return q.where(Appointment.doctor_id == actor.id)
    if actor.is_patient:
        return q.where(Appointment.patient_id == actor.id)
    return q


def list_all(actor: Actor) -> list[Appointment]:
    require_role(actor, Role.ADMIN)
    with db_session() as s:
        q = select(Appointment).order_by(Appointment.appointment_date_time.asc())
        return list(s.scalars(q))


def list_by_date_range(start: datetime, end: datetime, actor: Actor) -> list[Appointment]:
    start, end = naive_utc(start), naive_utc(end)
    if start > end:
        raise ValidationError("Start must not be after end")

    with db_session() as s:
        q = select(Appointment).where(
            and_(Appointment.appointment_date_time >= start, Appointment.appointment_date_time <= end)
        )
        q = _scope(q, actor).order_by(Appointment.appointment_date_time.asc())
        return list(s.scalars(q))


def my_appointments(actor: Actor) -> list[Appointment]:
    require_role(actor, Role.DOCTOR, Role.PATIENT)
    with db_session() as s:
        q = _scope(select(Appointment), actor).order_by(Appointment.appointment_date_time.asc())
        return list(s.scalars(q))


def my_upcoming_appointments(actor: Actor) -> list[Appointment]:
    require_role(actor, Role.DOCTOR, Role.PATIENT)
    with db_session() as s:
        q = select(Appointment).where(Appointment.appointment_date_time > utcnow())
        q = _scope(q, actor).order_by(Appointment.appointment_date_time.asc())
        return list(s.scalars(q))


def list_for_doctor(doctor_id: str, actor: Actor) -> list[Appointment]:
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    if actor.is_doctor and actor.id != doctor_id:
        raise PermissionDeniedError("Doctors can only list their own appointments")

    with db_session() as s:
        q = (
            select(Appointment)
            .where(Appointment.doctor_id == doctor_id)
            .order_by(Appointment.appointment_date_time.asc())
        )
        return list(s.scalars(q))


def list_for_patient(patient_id: str, payment_status: PaymentStatus | None = None) -> list[Appointment]:
    with db_session() as s:
        q = select(Appointment).where(Appointment.patient_id == patient_id)
        if payment_status is not None:
            q = q.where(Appointment.payment_status == payment_status)
        q = q.order_by(Appointment.appointment_date_time.asc())
        return list(s.scalars(q))

