import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    DigitalRxError,
    InvalidTransition,
    PaymentValidationError,
    ResourceNotFound,
)
from app.crud.payment_transaction import PaymentTransactionCRUD
from app.crud.prescription import PrescriptionCRUD
from app.crud.system_log import SystemLogCRUD
from app.db.enums import LogStatus, OrderProgress, PrescriptionPaymentStatus, PrescriptionStatus
from app.models.patient import Patient
from app.models.user import User
from app.services.digitalrx.client import DigitalRxClient
from app.services.digitalrx.payloads import build_submission_payload
from app.services.lifecycle import (
    advance_order_progress,
    can_transition_prescription,
    transition_prescription,
)
from app.services.pharmacy_backend_service import PharmacyBackendService

logger = logging.getLogger(__name__)

SUBMITTED_ACTION = "PRESCRIPTION_SUBMITTED_AFTER_PAYMENT"
SUBMISSION_FAILED_ACTION = "PRESCRIPTION_SUBMISSION_FAILED"


class PharmacySubmissionService:
    def __init__(self, session: AsyncSession, digitalrx: DigitalRxClient):
        self.session = session
        self.digitalrx = digitalrx
        self.prescriptions = PrescriptionCRUD(session)
        self.audit = SystemLogCRUD(session)

    async def submit(self, *, prescription_id: UUID, user_id: UUID | None = None) -> dict:
        """
        Sends a paid prescription to its pharmacy's DigitalRx backend.

        Safe to call twice: a prescription that already has a queue id is
        reported as such without a second DigitalRx call, whatever status
        the pharmacy has moved it to since.
        """
        prescription = await self.prescriptions.get_by_id(prescription_id)
        if not prescription:
            raise ResourceNotFound("Prescription not found")

        if prescription.queue_id:
            return {
                "success": True,
                "message": "Prescription already submitted",
                "queue_id": prescription.queue_id,
            }

        if prescription.payment_status != PrescriptionPaymentStatus.PAID:
            raise PaymentValidationError("Payment not completed")

        # Rejected before DigitalRx is called; an order placed there cannot be taken back
        if not can_transition_prescription(prescription.status, PrescriptionStatus.SUBMITTED):
            raise InvalidTransition(prescription.status, PrescriptionStatus.SUBMITTED)

        provider = await self.session.get(User, prescription.prescriber_id)
        if not provider:
            raise ResourceNotFound("Provider not found")

        patient = await self.session.get(Patient, prescription.patient_id)
        if not patient:
            raise ResourceNotFound("Patient not found")

        backend = await PharmacyBackendService(self.session).resolve(prescription.pharmacy_id)

        payload = build_submission_payload(
            prescription=prescription,
            patient=patient,
            provider=provider,
            store_id=backend.store_id,
        )

        try:
            queue_id = await self.digitalrx.submit(backend, payload)
        except DigitalRxError as exc:
            logger.error(
                f"DigitalRx submission failed: {exc.message}",
                extra={"prescription_id": prescription.id},
            )
            await self.audit.record(
                action=SUBMISSION_FAILED_ACTION,
                status=LogStatus.ERROR,
                details=f"Prescription {prescription.id}: {exc.message}",
                user_id=user_id,
            )
            raise

        transition_prescription(prescription, PrescriptionStatus.SUBMITTED)
        prescription.queue_id = queue_id
        prescription.submitted_to_pharmacy_at = datetime.now(timezone.utc)

        if prescription.payment_transaction_id:
            transaction = await PaymentTransactionCRUD(self.session).get_by_id(
                prescription.payment_transaction_id
            )
            advance_order_progress(transaction, OrderProgress.PHARMACY_PROCESSING)

        self.audit.add(
            action=SUBMITTED_ACTION,
            status=LogStatus.SUCCESS,
            details=f"Prescription {prescription.id} submitted: {prescription.medication}",
            queue_id=queue_id,
            user_id=user_id,
        )
        await self.session.commit()

        logger.info(
            f"Prescription submitted to pharmacy, queue {queue_id}",
            extra={"prescription_id": prescription.id, "queue_id": queue_id},
        )

        return {
            "success": True,
            "message": "Prescription submitted to pharmacy",
            "queue_id": queue_id,
        }
