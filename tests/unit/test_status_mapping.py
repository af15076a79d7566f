import pytest

from app.db.enums import PrescriptionStatus
from app.services.digitalrx.status_mapping import map_digitalrx_status


@pytest.mark.parametrize("raw, expected", [
    ("Delivered", PrescriptionStatus.DELIVERED),
    ("  picked up ", PrescriptionStatus.PICKED_UP),
    ("APPROVED", PrescriptionStatus.APPROVED),
    ("Packed", PrescriptionStatus.PACKED),
    ("submitted", PrescriptionStatus.SUBMITTED),
])
def test_explicit_status_strings(raw, expected):
    result = map_digitalrx_status({"Status": raw}, PrescriptionStatus.SUBMITTED)
    assert result.new_status == expected


def test_unknown_status_string_keeps_current():
    result = map_digitalrx_status({"Status": "On Hold"}, PrescriptionStatus.PACKED)
    assert result.new_status == PrescriptionStatus.PACKED


def test_explicit_status_wins_over_dates():
    result = map_digitalrx_status(
        {"Status": "Packed", "DeliveredDate": "2026-01-05"},
        PrescriptionStatus.SUBMITTED,
    )
    assert result.new_status == PrescriptionStatus.PACKED


def test_most_advanced_date_wins():
    payload = {
        "PackDateTime": "2026-01-01T10:00:00",
        "ApprovedDate": "2026-01-02",
        "PickupDate": "2026-01-03",
    }
    result = map_digitalrx_status(payload, PrescriptionStatus.SUBMITTED)
    assert result.new_status == PrescriptionStatus.PICKED_UP


def test_pack_date_alone_means_packed():
    result = map_digitalrx_status({"PackDateTime": "2026-01-01"}, PrescriptionStatus.SUBMITTED)
    assert result.new_status == PrescriptionStatus.PACKED


def test_empty_payload_keeps_current_status_and_tracking():
    result = map_digitalrx_status({}, PrescriptionStatus.APPROVED, "1Z999")
    assert result.new_status == PrescriptionStatus.APPROVED
    assert result.tracking_number == "1Z999"


def test_new_tracking_number_replaces_existing():
    result = map_digitalrx_status(
        {"PickupDate": "2026-01-03", "TrackingNumber": "9400111"},
        PrescriptionStatus.APPROVED,
        "OLD",
    )
    assert result.tracking_number == "9400111"


def test_delivered_date_wins_over_every_other_date():
    payload = {
        "PackDateTime": "2026-01-01T10:00:00",
        "ApprovedDate": "2026-01-02",
        "PickupDate": "2026-01-03",
        "DeliveredDate": "2026-01-05",
        "TrackingNumber": "1Z999",
    }
    result = map_digitalrx_status(payload, PrescriptionStatus.SUBMITTED)
    assert result.new_status == PrescriptionStatus.DELIVERED
