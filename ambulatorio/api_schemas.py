from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .models import AppointmentStatus, NotificationType, PaymentStatus, Role, Sender


class OrmOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Schemi Auth / utenti

class RegisterIn(BaseModel):
    first_name: str
    last_name: str
    email: str
    password: str
    phone: str | None = None


class UserCreateIn(RegisterIn):
    # creazione da admin: qualsiasi ruolo
    role: Role = Role.PATIENT
    specialization: str | None = None


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(OrmOut):
    id: str
    first_name: str
    last_name: str
    email: str
    role: Role
    phone: str | None = None
    specialization: str | None = None
    is_active: bool
    created_at: datetime


class DoctorOut(OrmOut):
    id: str
    first_name: str
    last_name: str
    specialization: str | None = None


# Schemi appuntamenti

class AppointmentIn(BaseModel):
    # un eventuale "status" inviato dal client viene ignorato
    doctor_id: str | None = None
    patient_id: str | None = None
    appointment_date_time: datetime | None = None
    title: str | None = None
    description: str | None = None
    notes: str | None = None
    is_video_consultation: bool | None = None
    meeting_link: str | None = None


class PublicAppointmentIn(BaseModel):
    # prenotazione "pubblica": tutti gli id obbligatori
    doctor_id: str
    patient_id: str
    title: str = Field(..., min_length=1)
    appointment_date_time: datetime
    description: str | None = None
    notes: str | None = None
    is_video_consultation: bool | None = None
    meeting_link: str | None = None


class AppointmentUpdateIn(BaseModel):
    title: str | None = None
    description: str | None = None
    notes: str | None = None
    appointment_date_time: datetime | None = None
    is_video_consultation: bool | None = None
    meeting_link: str | None = None


class ReasonIn(BaseModel):
    reason: str | None = None


class AppointmentOut(OrmOut):
    id: str
    patient_id: str
    doctor_id: str
    appointment_date_time: datetime
    title: str
    description: str | None = None
    notes: str | None = None
    status: AppointmentStatus
    rejection_reason: str | None = None
    is_video_consultation: bool
    meeting_link: str | None = None
    payment_amount: float | None = None
    payment_status: PaymentStatus
    payment_method: str | None = None
    payment_date: datetime | None = None
    payment_reference: str | None = None
    payment_notes: str | None = None
    created_at: datetime
    updated_at: datetime


# Schemi pagamenti

class PaymentIn(BaseModel):
    # accetta sia snake_case sia i nomi camelCase dei client esistenti
    appointment_id: str = Field(validation_alias=AliasChoices("appointment_id", "appointmentId"))
    amount: float
    payment_method: str = Field(validation_alias=AliasChoices("payment_method", "paymentMethod"))


# Schemi notifiche

class NotificationOut(OrmOut):
    id: int
    user_id: str
    title: str
    message: str
    type: NotificationType
    is_read: bool
    related_appointment_id: str | None = None
    created_at: datetime


class CountOut(BaseModel):
    count: int


# Schemi chatbot

class ChatSessionOut(OrmOut):
    id: int
    user_id: str
    start_time: datetime
    end_time: datetime | None = None
    last_activity_time: datetime | None = None
    is_active: bool


class ChatMessageOut(OrmOut):
    id: int
    session_id: int
    content: str
    sender: Sender
    timestamp: datetime
    message_type: str | None = None


class ChatSessionDetailOut(ChatSessionOut):
    messages: list[ChatMessageOut] = []


class ChatMessageIn(BaseModel):
    content: str


class ChatReplyOut(BaseModel):
    response: str
    timestamp: datetime
    message_type: str | None = None


class ChatbotConfigOut(BaseModel):
    disclaimers: list[str]
    medical_sources: list[str]


# Schemi cartella clinica

class MedicalRecordIn(BaseModel):
    patient_id: str | None = None
    doctor_id: str | None = None
    diagnosis: str | None = None
    treatment: str | None = None
    notes: str | None = None


class MedicalRecordOut(OrmOut):
    id: int
    patient_id: str
    doctor_id: str
    diagnosis: str | None = None
    treatment: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class PrescriptionIn(BaseModel):
    medical_record_id: int | None = None
    medication_name: str | None = None
    dosage: str | None = None
    instructions: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class PrescriptionOut(OrmOut):
    id: int
    medical_record_id: int
    medication_name: str
    dosage: str | None = None
    instructions: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    created_at: datetime
    updated_at: datetime


class LabReportIn(BaseModel):
    patient_id: str | None = None
    doctor_id: str | None = None
    medical_record_id: int | None = None
    test_name: str | None = None
    test_results: str | None = None
    test_date: datetime | None = None
    report_date: datetime | None = None


class LabReportOut(OrmOut):
    id: int
    medical_record_id: int | None = None
    patient_id: str
    doctor_id: str
    test_name: str
    test_results: str | None = None
    test_date: datetime | None = None
    report_date: datetime | None = None
    file_name: str | None = None
    file_type: str | None = None
    file_size: int | None = None
    created_at: datetime
    updated_at: datetime
