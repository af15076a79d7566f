"""
DigitalRx -> internal status mapping.

DigitalRx moves a prescription through
Submitted -> Packed (PackDateTime) -> Approved (ApprovedDate)
-> Picked Up (PickupDate, TrackingNumber) -> Delivered (DeliveredDate).
Older date fields stay populated as a record progresses, so the date
fields are checked most-advanced first.
"""
from dataclasses import dataclass
from typing import Any, Mapping

from app.db.enums import PrescriptionStatus

# Explicit `Status` strings, compared lowercased and trimmed
STATUS_STRINGS: dict[str, PrescriptionStatus] = {
    "delivered": PrescriptionStatus.DELIVERED,
    "picked up": PrescriptionStatus.PICKED_UP,
    "approved": PrescriptionStatus.APPROVED,
    "packed": PrescriptionStatus.PACKED,
    "submitted": PrescriptionStatus.SUBMITTED,
}

DATE_FIELDS: tuple[tuple[str, PrescriptionStatus], ...] = (
    ("DeliveredDate", PrescriptionStatus.DELIVERED),
    ("PickupDate", PrescriptionStatus.PICKED_UP),
    ("ApprovedDate", PrescriptionStatus.APPROVED),
    ("PackDateTime", PrescriptionStatus.PACKED),
)


@dataclass(frozen=True)
class MappedStatus:
    new_status: PrescriptionStatus
    tracking_number: str | None


def map_digitalrx_status(
    payload: Mapping[str, Any],
    current_status: PrescriptionStatus,
    existing_tracking: str | None = None,
) -> MappedStatus:
    new_status = PrescriptionStatus(current_status)

    raw_status = payload.get("Status")
    if raw_status:
        new_status = STATUS_STRINGS.get(str(raw_status).strip().lower(), new_status)
    else:
        for field, status in DATE_FIELDS:
            if payload.get(field):
                new_status = status
                break

    tracking_number = payload.get("TrackingNumber") or existing_tracking or None

    return MappedStatus(new_status=new_status, tracking_number=tracking_number)
