from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from pydantic import ValidationError as SchemaError

from . import records
from .api_deps import get_current_actor, get_storage, require_roles
from .api_schemas import (
    LabReportIn,
    LabReportOut,
    MedicalRecordIn,
    MedicalRecordOut,
    PrescriptionIn,
    PrescriptionOut,
)
from .errors import ValidationError
from .models import Role
from .storage import FileStorage
from .users import Actor

records_router = APIRouter(prefix="/api/medical-records", tags=["medical-records"])
prescriptions_router = APIRouter(prefix="/api/prescriptions", tags=["prescriptions"])
lab_reports_router = APIRouter(prefix="/api/lab-reports", tags=["lab-reports"])

writer = require_roles(Role.DOCTOR, Role.ADMIN)


# Medical records

@records_router.get("", response_model=list[MedicalRecordOut])
def list_records(patient_id: str | None = None, actor: Actor = Depends(get_current_actor)):
    return records.list_records(actor, patient_id)


@records_router.get("/{record_id}", response_model=MedicalRecordOut)
def get_record(record_id: int, actor: Actor = Depends(get_current_actor)):
    return records.get_record(record_id, actor)


@records_router.post("", response_model=MedicalRecordOut, status_code=status.HTTP_201_CREATED)
def create_record(payload: MedicalRecordIn, actor: Actor = Depends(writer)):
    return records.create_record(records.RecordData(**payload.model_dump()), actor)


@records_router.put("/{record_id}", response_model=MedicalRecordOut)
def update_record(record_id: int, payload: MedicalRecordIn, actor: Actor = Depends(writer)):
    return records.update_record(record_id, records.RecordData(**payload.model_dump()), actor)


@records_router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_record(record_id: int, actor: Actor = Depends(writer), storage: FileStorage = Depends(get_storage)) -> None:
    records.delete_record(record_id, actor, storage)


# Prescriptions

@prescriptions_router.get("", response_model=list[PrescriptionOut])
def list_prescriptions(medical_record_id: int | None = None, actor: Actor = Depends(get_current_actor)):
    return records.list_prescriptions(actor, medical_record_id)


@prescriptions_router.get("/{prescription_id}", response_model=PrescriptionOut)
def get_prescription(prescription_id: int, actor: Actor = Depends(get_current_actor)):
    return records.get_prescription(prescription_id, actor)


@prescriptions_router.post("", response_model=PrescriptionOut, status_code=status.HTTP_201_CREATED)
def create_prescription(payload: PrescriptionIn, actor: Actor = Depends(writer)):
    return records.create_prescription(records.PrescriptionData(**payload.model_dump()), actor)


@prescriptions_router.put("/{prescription_id}", response_model=PrescriptionOut)
def update_prescription(prescription_id: int, payload: PrescriptionIn, actor: Actor = Depends(writer)):
    return records.update_prescription(prescription_id, records.PrescriptionData(**payload.model_dump()), actor)


@prescriptions_router.delete("/{prescription_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_prescription(prescription_id: int, actor: Actor = Depends(writer)) -> None:
    records.delete_prescription(prescription_id, actor)


# Lab reports (multipart: campo JSON "lab_report" + file opzionale)

def _lab_data(raw: str) -> records.LabReportData:
    try:
        payload = LabReportIn.model_validate_json(raw)
    except SchemaError as e:
        raise ValidationError(f"Invalid lab_report field: {e.error_count()} error(s)") from None
    return records.LabReportData(**payload.model_dump())


async def _upload(file: UploadFile | None) -> records.Upload | None:
    if file is None:
        return None
    return records.Upload(data=await file.read(), file_name=file.filename, content_type=file.content_type)


@lab_reports_router.get("", response_model=list[LabReportOut])
def list_lab_reports(actor: Actor = Depends(get_current_actor)):
    return records.list_lab_reports(actor)


@lab_reports_router.get("/patient/{patient_id}", response_model=list[LabReportOut])
def lab_reports_for_patient(patient_id: str, actor: Actor = Depends(get_current_actor)):
    return records.list_lab_reports_for_patient(patient_id, actor)


@lab_reports_router.get("/doctor/{doctor_id}", response_model=list[LabReportOut])
def lab_reports_for_doctor(doctor_id: str, actor: Actor = Depends(writer)):
    return records.list_lab_reports_for_doctor(doctor_id, actor)


@lab_reports_router.get("/{report_id}", response_model=LabReportOut)
def get_lab_report(report_id: int, actor: Actor = Depends(get_current_actor)):
    return records.get_lab_report(report_id, actor)


@lab_reports_router.post("", response_model=LabReportOut, status_code=status.HTTP_201_CREATED)
async def create_lab_report(
    lab_report: str = Form(...),
    file: UploadFile | None = File(None),
    actor: Actor = Depends(writer),
    storage: FileStorage = Depends(get_storage),
):
    data = _lab_data(lab_report)
    upload = await _upload(file)
    return records.create_lab_report(data, actor, storage, upload)


@lab_reports_router.put("/{report_id}", response_model=LabReportOut)
async def update_lab_report(
    report_id: int,
    lab_report: str = Form(...),
    file: UploadFile | None = File(None),
    actor: Actor = Depends(writer),
    storage: FileStorage = Depends(get_storage),
):
    data = _lab_data(lab_report)
    upload = await _upload(file)
    return records.update_lab_report(report_id, data, actor, storage, upload)


@lab_reports_router.get("/{report_id}/download")
def download_lab_report(
    report_id: int,
    actor: Actor = Depends(get_current_actor),
    storage: FileStorage = Depends(get_storage),
) -> Response:
    content, file_name, content_type = records.download_lab_report(report_id, actor, storage)
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@lab_reports_router.delete("/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_lab_report(report_id: int, actor: Actor = Depends(writer), storage: FileStorage = Depends(get_storage)) -> None:
    records.delete_lab_report(report_id, actor, storage)
