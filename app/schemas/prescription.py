from uuid import UUID
from pydantic import BaseModel

from app.db.enums import PrescriptionStatus


# MARK PAID / SUBMIT
class MarkPaidResponse(BaseModel):
    success: bool = True
    message: str | None = None
    queue_id: str | None = None
    warning: str | None = None
    pharmacy_error: str | None = None


class SubmitToPharmacyResponse(BaseModel):
    success: bool = True
    message: str
    queue_id: str


# STATUS SYNC
class StatusCheckResponse(BaseModel):
    success: bool = True
    prescription_id: UUID
    queue_id: str
    old_status: PrescriptionStatus
    new_status: PrescriptionStatus
    tracking_number: str | None = None
    changed: bool


class BatchStatusRequest(BaseModel):
    """
    Omit `prescription_ids` to check every submitted prescription
    written by the caller.
    """
    prescription_ids: list[UUID] | None = None


class BatchStatusItem(BaseModel):
    prescription_id: UUID
    queue_id: str
    success: bool
    status: PrescriptionStatus | None = None
    tracking_number: str | None = None
    changed: bool = False
    error: str | None = None


class BatchStatusResponse(BaseModel):
    success: bool = True
    statuses: list[BatchStatusItem]
