from __future__ import annotations

import logging
import random
import secrets
import string
from decimal import Decimal, InvalidOperation
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from .appointments import list_for_patient
from .db import db_session
from .errors import ConflictError, NotFoundError, PaymentError, PermissionDeniedError, ValidationError
from .models import Appointment, PaymentStatus, utcnow

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "PAY_"
REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_LENGTH = 8

NOTE_SUCCESS = "Payment processed successfully"
NOTE_FAILURE = "Payment failed - please try again"
NOTE_REFUNDED = "Payment refunded"


# =========================
# Gateway (simulazione sistema esterno)
# =========================
class PaymentGateway(Protocol):
    def approve(self, appointment_id: str, amount: Decimal, method: str) -> bool:
        ...


class RandomPaymentGateway:
    """Esito casuale: successo con probabilità `success_rate`."""

    def __init__(self, success_rate: float = 0.9, rng: random.Random | None = None) -> None:
        self.success_rate = success_rate
        self.rng = rng or random.Random()

    def approve(self, appointment_id: str, amount: Decimal, method: str) -> bool:
        return self.rng.random() < self.success_rate


class FixedPaymentGateway:
    """Esito deterministico (test, demo da CLI)."""

    def __init__(self, outcome: bool) -> None:
        self.outcome = outcome

    def approve(self, appointment_id: str, amount: Decimal, method: str) -> bool:
        return self.outcome


def new_reference() -> str:
    return REFERENCE_PREFIX + "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH))


def _unique_reference(s: Session) -> str:
    while True:
        ref = new_reference()
        taken = s.execute(select(Appointment.id).where(Appointment.payment_reference == ref)).first()
        if taken is None:
            return ref


def _get(s: Session, appointment_id: str) -> Appointment:
    app = s.get(Appointment, appointment_id)
    if not app:
        raise NotFoundError(f"Appointment not found with id: {appointment_id}")
    return app


def _amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value}") from None
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    return amount.quantize(Decimal("0.01"))


# =========================
# Use case
# =========================
def process_payment(
    appointment_id: str,
    amount,
    method: str,
    acting_user_id: str,
    gateway: PaymentGateway,
) -> Appointment:
    """
    Use case: Pagare un appuntamento (solo il paziente titolare).
    - esito deciso dal gateway
    - successo: PAID + riferimento univoco PAY_XXXXXXXX
    - fallimento: UNPAID + nota, lo stato viene comunque salvato e poi
      la chiamata fallisce con PaymentError
    """
    amount = _amount(amount)
    method = (method or "").strip()
    if not method:
        raise ValidationError("Payment method is required")

    logger.info("processing payment for appointment %s by user %s", appointment_id, acting_user_id)

    with db_session() as s:
        app = _get(s, appointment_id)
        if app.patient_id != acting_user_id:
            raise PermissionDeniedError("You can only pay for your own appointments")

        ok = gateway.approve(app.id, amount, method)
        if ok:
            app.payment_amount = amount
            app.payment_status = PaymentStatus.PAID
            app.payment_method = method
            app.payment_date = utcnow()
            app.payment_reference = _unique_reference(s)
            app.payment_notes = NOTE_SUCCESS
            logger.info("payment %s successful for appointment %s", app.payment_reference, app.id)
        else:
            app.payment_status = PaymentStatus.UNPAID
            app.payment_notes = NOTE_FAILURE
            logger.warning("payment failed for appointment %s", app.id)
        app.updated_at = utcnow()

    # fuori dal with: lo stato di fallimento è già committato
    if not ok:
        raise PaymentError("Payment processing failed - please try again")
    return app


def refund_payment(appointment_id: str, acting_user_id: str) -> Appointment:
    """
    Use case: Rimborsare (paziente o medico dell'appuntamento).
    Solo cambio di stato + nota, nessun movimento monetario.
    """
    with db_session() as s:
        app = _get(s, appointment_id)
        if acting_user_id not in (app.patient_id, app.doctor_id):
            raise PermissionDeniedError("Access denied")
        if app.payment_status is not PaymentStatus.PAID:
            raise ConflictError("Only paid appointments can be refunded")

        app.payment_status = PaymentStatus.REFUNDED
        app.payment_notes = NOTE_REFUNDED
        app.updated_at = utcnow()
        logger.info("payment for appointment %s refunded by %s", app.id, acting_user_id)
        return app


def get_paid_appointments(user_id: str) -> list[Appointment]:
    return list_for_patient(user_id, PaymentStatus.PAID)


def get_unpaid_appointments(user_id: str) -> list[Appointment]:
    return list_for_patient(user_id, PaymentStatus.UNPAID)
