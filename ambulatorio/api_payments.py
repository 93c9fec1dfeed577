from __future__ import annotations

from fastapi import APIRouter, Depends

from . import payments
from .api_deps import get_current_actor, get_payment_gateway, require_roles
from .api_schemas import AppointmentOut, PaymentIn
from .models import Role
from .payments import PaymentGateway
from .users import Actor

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/process", response_model=AppointmentOut)
def process(
    payload: PaymentIn,
    actor: Actor = Depends(require_roles(Role.PATIENT)),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return payments.process_payment(payload.appointment_id, payload.amount, payload.payment_method, actor.id, gateway)


@router.get("/history", response_model=list[AppointmentOut])
def history(actor: Actor = Depends(require_roles(Role.PATIENT))):
    return payments.get_paid_appointments(actor.id)


@router.get("/pending", response_model=list[AppointmentOut])
def pending(actor: Actor = Depends(require_roles(Role.PATIENT))):
    return payments.get_unpaid_appointments(actor.id)


@router.post("/{appointment_id}/refund", response_model=AppointmentOut)
def refund(appointment_id: str, actor: Actor = Depends(get_current_actor)):
    return payments.refund_payment(appointment_id, actor.id)
