from uuid import UUID
from pydantic import BaseModel, ConfigDict

from app.db.enums import PrescriptionStatus


class WebhookAck(BaseModel):
    status: str
    reason: str | None = None


class DigitalRxWebhookRequest(BaseModel):
    """
    DigitalRx status push. Either DigitalRx's own field names or the
    snake_case ones are accepted.
    """
    QueueID: str | int | None = None
    RxStatus: str | None = None
    TrackingNumber: str | None = None

    queue_id: str | None = None
    new_status: str | None = None
    tracking_number: str | None = None

    model_config = ConfigDict(extra="allow")


class DigitalRxWebhookResponse(BaseModel):
    success: bool = True
    prescription_id: UUID
    old_status: PrescriptionStatus
    new_status: PrescriptionStatus
    changed: bool
