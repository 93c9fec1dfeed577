from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import db_session
from .errors import NotFoundError, PermissionDeniedError
from .models import Appointment, AppointmentStatus, Notification, NotificationType, utcnow

logger = logging.getLogger(__name__)


# =========================
# Emissione (dentro la transazione del chiamante)
# =========================
def emit(
    s: Session,
    user_id: str,
    title: str,
    message: str,
    type_: NotificationType,
    related_appointment_id: str | None = None,
) -> Notification | None:
    """
    Crea una notifica nella sessione del chiamante, dentro un SAVEPOINT.

    Se l'inserimento fallisce l'errore viene loggato e ignorato: il savepoint
    viene annullato e la mutazione principale del chiamante resta valida.
    """
    try:
        with s.begin_nested():
            n = Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=type_,
                is_read=False,
                related_appointment_id=related_appointment_id,
            )
            s.add(n)
        return n
    except SQLAlchemyError:
        logger.exception("notification %s for user %s not stored", type_.value, user_id)
        return None


# =========================
# Query (sempre limitate all'utente chiamante)
# =========================
def list_for_user(user_id: str) -> list[Notification]:
    with db_session() as s:
        q = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        return list(s.scalars(q))


def list_unread(user_id: str) -> list[Notification]:
    with db_session() as s:
        q = (
            select(Notification)
            .where(and_(Notification.user_id == user_id, Notification.is_read.is_(False)))
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        return list(s.scalars(q))


def count_unread(user_id: str) -> int:
    with db_session() as s:
        q = select(func.count(Notification.id)).where(
            and_(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
        return int(s.execute(q).scalar_one())


def _owned(s: Session, notification_id: int, user_id: str) -> Notification:
    n = s.get(Notification, notification_id)
    if not n:
        raise NotFoundError(f"Notification not found with id: {notification_id}")
    if n.user_id != user_id:
        raise PermissionDeniedError("You can only access your own notifications")
    return n


def get_for_user(notification_id: int, user_id: str) -> Notification:
    with db_session() as s:
        return _owned(s, notification_id, user_id)


def mark_read(notification_id: int, user_id: str) -> Notification:
    with db_session() as s:
        n = _owned(s, notification_id, user_id)
        n.is_read = True
        return n


def mark_all_read(user_id: str) -> int:
    with db_session() as s:
        res = s.execute(
            update(Notification)
            .where(and_(Notification.user_id == user_id, Notification.is_read.is_(False)))
            .values(is_read=True)
        )
        return res.rowcount or 0


# =========================
# Promemoria (simulazione sistema esterno, vedi cli remind)
# =========================
def send_reminders(within_hours: int = 24) -> int:
    """
    Emette un APPOINTMENT_REMINDER al paziente di ogni appuntamento APPROVED
    che inizia entro `within_hours` e non ha ancora ricevuto promemoria.
    Ritorna il numero di promemoria emessi.
    """
    now = utcnow()
    limit = now + timedelta(hours=within_hours)

    with db_session() as s:
        q = (
            select(Appointment)
            .where(
                and_(
                    Appointment.status == AppointmentStatus.APPROVED,
                    Appointment.appointment_date_time > now,
                    Appointment.appointment_date_time <= limit,
                    Appointment.reminder_sent_at.is_(None),
                )
            )
            .order_by(Appointment.appointment_date_time.asc())
        )
        count = 0
        for app in list(s.scalars(q)):
            n = emit(
                s,
                user_id=app.patient_id,
                title="Appointment Reminder",
                message=f"Reminder: '{app.title}' on {app.appointment_date_time.strftime('%d/%m/%Y %H:%M')}.",
                type_=NotificationType.APPOINTMENT_REMINDER,
                related_appointment_id=app.id,
            )
            if n is not None:
                app.reminder_sent_at = now
                count += 1

        logger.info("%d reminders emitted", count)
        return count
