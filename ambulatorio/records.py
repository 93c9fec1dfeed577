"""
Cartella clinica: referti medici, prescrizioni, esami di laboratorio.

Regole di accesso comuni:
- scrittura (create/update/delete): solo DOCTOR e ADMIN
- lettura: DOCTOR e ADMIN tutto, PATIENT solo ciò che lo riguarda
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import db_session
from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .models import LabReport, MedicalRecord, Prescription, Role, naive_utc, utcnow
from .storage import FileStorage, StoredFile
from .users import Actor, require_role, resolve_user

logger = logging.getLogger(__name__)


# =========================
# DTO
# =========================
@dataclass(frozen=True)
class RecordData:
    patient_id: str | None = None
    doctor_id: str | None = None
    diagnosis: str | None = None
    treatment: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PrescriptionData:
    medical_record_id: int | None = None
    medication_name: str | None = None
    dosage: str | None = None
    instructions: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


@dataclass(frozen=True)
class LabReportData:
    patient_id: str | None = None
    doctor_id: str | None = None
    medical_record_id: int | None = None
    test_name: str | None = None
    test_results: str | None = None
    test_date: datetime | None = None
    report_date: datetime | None = None


@dataclass(frozen=True)
class Upload:
    data: bytes
    file_name: str | None
    content_type: str | None


def _changes(data) -> dict:
    out = {}
    for f in fields(data):
        value = getattr(data, f.name)
        if value is None:
            continue
        if isinstance(value, datetime):
            value = naive_utc(value)
        out[f.name] = value
    return out


def _can_read(actor: Actor, patient_id: str) -> None:
    if actor.is_patient and actor.id != patient_id:
        raise PermissionDeniedError("Patients can only access their own records")


def _people(s: Session, data, actor: Actor, current=None) -> tuple[str, str]:
    """Paziente e medico validati per ruolo; il medico di default è l'attore stesso."""
    patient_id = data.patient_id or (current.patient_id if current else None)
    doctor_id = data.doctor_id or (current.doctor_id if current else None)
    if not doctor_id and actor.is_doctor:
        doctor_id = actor.id
    patient = resolve_user(s, patient_id, Role.PATIENT, "Patient")
    doctor = resolve_user(s, doctor_id, Role.DOCTOR, "Doctor")
    return patient.id, doctor.id


# =========================
# Medical records
# =========================
def _record(s: Session, record_id: int) -> MedicalRecord:
    r = s.get(MedicalRecord, record_id)
    if not r:
        raise NotFoundError(f"Medical record not found with id: {record_id}")
    return r


def list_records(actor: Actor, patient_id: str | None = None) -> list[MedicalRecord]:
    if actor.is_patient:
        patient_id = actor.id
    with db_session() as s:
        q = select(MedicalRecord).order_by(MedicalRecord.created_at.desc())
        if patient_id:
            q = q.where(MedicalRecord.patient_id == patient_id)
        return list(s.scalars(q))


def get_record(record_id: int, actor: Actor) -> MedicalRecord:
    with db_session() as s:
        r = _record(s, record_id)
        _can_read(actor, r.patient_id)
        return r


def create_record(data: RecordData, actor: Actor) -> MedicalRecord:
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    with db_session() as s:
        patient_id, doctor_id = _people(s, data, actor)
        now = utcnow()
        r = MedicalRecord(
            patient_id=patient_id,
            doctor_id=doctor_id,
            diagnosis=data.diagnosis,
            treatment=data.treatment,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )
        s.add(r)
        s.flush()
        logger.info("medical record %s created by %s", r.id, actor.id)
        return r


def update_record(record_id: int, data: RecordData, actor: Actor) -> MedicalRecord:
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    with db_session() as s:
        r = _record(s, record_id)
        r.patient_id, r.doctor_id = _people(s, data, actor, current=r)
        for name, value in _changes(data).items():
            if name not in ("patient_id", "doctor_id"):
                setattr(r, name, value)
        r.updated_at = utcnow()
        return r


def delete_record(record_id: int, actor: Actor, storage: FileStorage) -> None:
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    with db_session() as s:
        r = _record(s, record_id)
        files = [lr.file_url for lr in r.lab_reports if lr.file_url]
        s.delete(r)
    for path in files:
        storage.delete(path)
    logger.info("medical record %s deleted by %s", record_id, actor.id)


# =========================
# Prescriptions
# =========================
def _prescription(s: Session, prescription_id: int) -> Prescription:
    p = s.get(Prescription, prescription_id)
    if not p:
        raise NotFoundError(f"Prescription not found with id: {prescription_id}")
    return p


def list_prescriptions(actor: Actor, medical_record_id: int | None = None) -> list[Prescription]:
    with db_session() as s:
        q = select(Prescription).join(MedicalRecord, Prescription.medical_record_id == MedicalRecord.id)
        if actor.is_patient:
            q = q.where(MedicalRecord.patient_id == actor.id)
        if medical_record_id is not None:
            q = q.where(Prescription.medical_record_id == medical_record_id)
        return list(s.scalars(q.order_by(Prescription.created_at.desc())))


def get_prescription(prescription_id: int, actor: Actor) -> Prescription:
    with db_session() as s:
        p = _prescription(s, prescription_id)
        _can_read(actor, _record(s, p.medical_record_id).patient_id)
        return p


def create_prescription(data: PrescriptionData, actor: Actor) -> Prescription:
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    name = (data.medication_name or "").strip()
    if not name:
        raise ValidationError("Medication name is required")
    if data.medical_record_id is None:
        raise ValidationError("Medical record ID is required")

    with db_session() as s:
        _record(s, data.medical_record_id)
        now = utcnow()
        p = Prescription(**_changes(data), created_at=now, updated_at=now)
        p.medication_name = name
        s.add(p)
        s.flush()
        logger.info("prescription %s created by %s", p.id, actor.id)
        return p


def update_prescription(prescription_id: int, data: PrescriptionData, actor: Actor) -> Prescription:
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    with db_session() as s:
        p = _prescription(s, prescription_id)
        changes = _changes(data)
        if "medical_record_id" in changes:
            _record(s, changes["medical_record_id"])
        if "medication_name" in changes and not changes["medication_name"].strip():
            raise ValidationError("Medication name is required")
        for name, value in changes.items():
            setattr(p, name, value)
        p.updated_at = utcnow()
        return p


def delete_prescription(prescription_id: int, actor: Actor) -> None:
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    with db_session() as s:
        s.delete(_prescription(s, prescription_id))


# =========================
# Lab reports
# =========================
def _lab_report(s: Session, report_id: int) -> LabReport:
    lr = s.get(LabReport, report_id)
    if not lr:
        raise NotFoundError(f"Lab report not found with id: {report_id}")
    return lr


def list_lab_reports(actor: Actor) -> list[LabReport]:
    with db_session() as s:
        q = select(LabReport)
        if actor.is_patient:
            q = q.where(LabReport.patient_id == actor.id)
        return list(s.scalars(q.order_by(LabReport.created_at.desc())))


def list_lab_reports_for_patient(patient_id: str, actor: Actor) -> list[LabReport]:
    _can_read(actor, patient_id)
    with db_session() as s:
        q = select(LabReport).where(LabReport.patient_id == patient_id).order_by(LabReport.created_at.desc())
        return list(s.scalars(q))


def list_lab_reports_for_doctor(doctor_id: str, actor: Actor) -> list[LabReport]:
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    with db_session() as s:
        q = select(LabReport).where(LabReport.doctor_id == doctor_id).order_by(LabReport.created_at.desc())
        return list(s.scalars(q))


def get_lab_report(report_id: int, actor: Actor) -> LabReport:
    with db_session() as s:
        lr = _lab_report(s, report_id)
        _can_read(actor, lr.patient_id)
        return lr


def _attach(lr: LabReport, stored: StoredFile) -> None:
    lr.file_url = stored.path
    lr.file_name = stored.file_name
    lr.file_type = stored.content_type
    lr.file_size = stored.size


def _store(upload: Upload | None, storage: FileStorage) -> StoredFile | None:
    if upload is None:
        return None
    return storage.store(upload.data, upload.file_name, upload.content_type)


def _discard(stored: StoredFile | None, storage: FileStorage) -> None:
    # il file appena scritto non deve sopravvivere a una transazione fallita
    if stored is not None:
        storage.delete(stored.path)


def create_lab_report(
    data: LabReportData,
    actor: Actor,
    storage: FileStorage,
    upload: Upload | None = None,
) -> LabReport:
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    test_name = (data.test_name or "").strip()
    if not test_name:
        raise ValidationError("Test name is required")
    stored = _store(upload, storage)

    try:
        with db_session() as s:
            patient_id, doctor_id = _people(s, data, actor)
            if data.medical_record_id is not None:
                _record(s, data.medical_record_id)

            now = utcnow()
            lr = LabReport(
                medical_record_id=data.medical_record_id,
                patient_id=patient_id,
                doctor_id=doctor_id,
                test_name=test_name,
                test_results=data.test_results,
                test_date=naive_utc(data.test_date) if data.test_date else None,
                report_date=naive_utc(data.report_date) if data.report_date else now,
                created_at=now,
                updated_at=now,
            )
            if stored is not None:
                _attach(lr, stored)
            s.add(lr)
            s.flush()
    except Exception:
        _discard(stored, storage)
        raise
    logger.info("lab report %s created by %s", lr.id, actor.id)
    return lr


def update_lab_report(
    report_id: int,
    data: LabReportData,
    actor: Actor,
    storage: FileStorage,
    upload: Upload | None = None,
) -> LabReport:
    """Aggiorna i campi indicati; un nuovo file sostituisce (e cancella) il precedente."""
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    stored = _store(upload, storage)

    try:
        with db_session() as s:
            lr = _lab_report(s, report_id)
            lr.patient_id, lr.doctor_id = _people(s, data, actor, current=lr)
            changes = _changes(data)
            if "medical_record_id" in changes:
                _record(s, changes["medical_record_id"])
            if "test_name" in changes and not changes["test_name"].strip():
                raise ValidationError("Test name is required")
            for name, value in changes.items():
                if name not in ("patient_id", "doctor_id"):
                    setattr(lr, name, value)

            old_file = None
            if stored is not None:
                old_file = lr.file_url
                _attach(lr, stored)
            lr.updated_at = utcnow()
    except Exception:
        _discard(stored, storage)
        raise

    storage.delete(old_file)
    return lr


def delete_lab_report(report_id: int, actor: Actor, storage: FileStorage) -> None:
    require_role(actor, Role.DOCTOR, Role.ADMIN)
    with db_session() as s:
        lr = _lab_report(s, report_id)
        path = lr.file_url
        s.delete(lr)
    storage.delete(path)
    logger.info("lab report %s deleted by %s", report_id, actor.id)


def download_lab_report(report_id: int, actor: Actor, storage: FileStorage) -> tuple[bytes, str, str]:
    """Contenuto dell'allegato: (bytes, nome file, content type)."""
    lr = get_lab_report(report_id, actor)
    if not lr.file_url:
        raise NotFoundError("Lab report has no attached file")
    return storage.read(lr.file_url), lr.file_name or "report", lr.file_type or "application/octet-stream"
