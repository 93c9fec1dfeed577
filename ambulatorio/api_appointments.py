from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status

from . import appointments as svc
from .api_deps import get_current_actor, get_optional_actor, require_roles
from .api_schemas import (
    AppointmentIn,
    AppointmentOut,
    AppointmentUpdateIn,
    DoctorOut,
    PublicAppointmentIn,
    ReasonIn,
)
from .models import Role
from .users import Actor, list_doctors

router = APIRouter(prefix="/api/appointments", tags=["appointments"])
public_router = APIRouter(prefix="/api/public", tags=["public"])


def _draft(payload: AppointmentIn | PublicAppointmentIn) -> svc.AppointmentDraft:
    return svc.AppointmentDraft(
        doctor_id=payload.doctor_id,
        patient_id=payload.patient_id,
        appointment_date_time=payload.appointment_date_time,
        title=payload.title,
        description=payload.description,
        notes=payload.notes,
        is_video_consultation=payload.is_video_consultation,
        meeting_link=payload.meeting_link,
    )


# PUBLIC endpoints (no JWT)

@public_router.get("/doctors", response_model=list[DoctorOut])
def public_doctors() -> list:
    return list_doctors()


@public_router.post("/appointments", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
def public_create(payload: PublicAppointmentIn):
    """Prenotazione senza login: stessa validazione e notifiche della creazione standard."""
    return svc.create_appointment(_draft(payload))


@router.post("/simple", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
def simple_create(payload: AppointmentIn, actor: Actor | None = Depends(get_optional_actor)):
    # anonimo: patient_id obbligatorio; autenticato: l'utente è l'attore
    return svc.create_appointment(_draft(payload), actor)


# PROTECTED endpoints (JWT)

@router.get("", response_model=list[AppointmentOut])
def list_all(actor: Actor = Depends(require_roles(Role.ADMIN))):
    return svc.list_all(actor)


@router.get("/my-appointments", response_model=list[AppointmentOut])
def my_appointments(actor: Actor = Depends(require_roles(Role.DOCTOR, Role.PATIENT))):
    return svc.my_appointments(actor)


@router.get("/my-upcoming-appointments", response_model=list[AppointmentOut])
def my_upcoming(actor: Actor = Depends(require_roles(Role.DOCTOR, Role.PATIENT))):
    return svc.my_upcoming_appointments(actor)


@router.get("/date-range", response_model=list[AppointmentOut])
def date_range(
    start: datetime = Query(...),
    end: datetime = Query(...),
    actor: Actor = Depends(get_current_actor),
):
    return svc.list_by_date_range(start, end, actor)


@router.get("/doctor/{doctor_id}", response_model=list[AppointmentOut])
def by_doctor(doctor_id: str, actor: Actor = Depends(require_roles(Role.DOCTOR, Role.ADMIN))):
    return svc.list_for_doctor(doctor_id, actor)


@router.get("/{appointment_id}", response_model=AppointmentOut)
def get_one(appointment_id: str, actor: Actor = Depends(get_current_actor)):
    return svc.get_appointment(appointment_id, actor)


@router.post("", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
def create(payload: AppointmentIn, actor: Actor = Depends(get_current_actor)):
    return svc.create_appointment(_draft(payload), actor)


@router.put("/{appointment_id}", response_model=AppointmentOut)
def update(appointment_id: str, payload: AppointmentUpdateIn, actor: Actor = Depends(get_current_actor)):
    changes = svc.AppointmentChanges(**payload.model_dump())
    return svc.update_appointment(appointment_id, changes, actor)


@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete(appointment_id: str, actor: Actor = Depends(require_roles(Role.DOCTOR, Role.ADMIN))) -> None:
    svc.delete_appointment(appointment_id, actor)


@router.put("/{appointment_id}/confirm", response_model=AppointmentOut)
def confirm(appointment_id: str, actor: Actor = Depends(require_roles(Role.DOCTOR, Role.ADMIN))):
    return svc.confirm_appointment(appointment_id, actor)


@router.put("/{appointment_id}/reject", response_model=AppointmentOut)
def reject(
    appointment_id: str,
    payload: ReasonIn | None = None,
    actor: Actor = Depends(require_roles(Role.DOCTOR, Role.ADMIN)),
):
    return svc.reject_appointment(appointment_id, actor, payload.reason if payload else None)


@router.put("/{appointment_id}/cancel", response_model=AppointmentOut)
def cancel(appointment_id: str, payload: ReasonIn | None = None, actor: Actor = Depends(get_current_actor)):
    return svc.cancel_appointment(appointment_id, actor, payload.reason if payload else None)


@router.put("/{appointment_id}/complete", response_model=AppointmentOut)
def complete(appointment_id: str, actor: Actor = Depends(require_roles(Role.DOCTOR, Role.ADMIN))):
    return svc.complete_appointment(appointment_id, actor)
