import time
from datetime import datetime, timezone

from app.core.config import settings
from app.models.patient import Patient
from app.models.prescription import Prescription
from app.models.user import User


def _address(owner) -> dict:
    address = owner.physical_address or {}
    return {
        "street": address.get("street"),
        "city": address.get("city"),
        "state": address.get("state"),
        "zip": address.get("zip") or address.get("zipCode"),
    }


def build_submission_payload(
    *,
    prescription: Prescription,
    patient: Patient,
    provider: User,
    store_id: str | None,
) -> dict:
    """Request body for DigitalRx RxWebRequest."""
    patient_address = _address(patient)
    provider_address = _address(provider)

    return {
        "StoreID": store_id,
        "VendorName": settings.digitalrx_vendor_name,
        "Patient": {
            "FirstName": patient.first_name,
            "LastName": patient.last_name,
            "DOB": patient.date_of_birth.isoformat() if patient.date_of_birth else None,
            "Sex": "M" if (patient.gender or "").lower() == "male" else "F",
            "PatientStreet": patient_address["street"],
            "PatientCity": patient_address["city"],
            "PatientState": patient_address["state"],
            "PatientZip": patient_address["zip"],
            "PatientPhone": patient.phone,
        },
        "Doctor": {
            "DoctorFirstName": provider.first_name,
            "DoctorLastName": provider.last_name,
            "DoctorNpi": provider.npi_number,
            "DoctorStreet": provider_address["street"],
            "DoctorCity": provider_address["city"],
            "DoctorState": provider_address["state"],
            "DoctorZip": provider_address["zip"],
            "DoctorPhone": provider.phone,
        },
        "RxClaim": {
            "RxNumber": f"RX{int(time.time() * 1000)}",
            "DrugName": prescription.medication,
            "Qty": str(prescription.quantity),
            "DateWritten": datetime.now(timezone.utc).date().isoformat(),
            "RequestedBy": provider.full_name,
            "Instructions": prescription.sig,
            "Notes": prescription.pharmacy_notes,
        },
        "DocSignature": provider.signature_url,
    }
