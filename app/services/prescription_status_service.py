"""
Keeps prescription status in step with DigitalRx.

Pull (single check, batch) and push (DigitalRx webhook) all funnel into
`_apply`, which maps through `map_digitalrx_status` and moves the status
through the lifecycle table.
"""
import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    DigitalRxError,
    InvalidRequest,
    InvalidTransition,
    NotAuthorized,
    ResourceNotFound,
)
from app.crud.payment_transaction import PaymentTransactionCRUD
from app.crud.prescription import PrescriptionCRUD
from app.crud.system_log import SystemLogCRUD
from app.db.enums import LogStatus
from app.models.prescription import Prescription
from app.models.user import User
from app.services.digitalrx.client import DigitalRxClient
from app.services.digitalrx.status_mapping import map_digitalrx_status
from app.services.lifecycle import (
    ORDER_PROGRESS_FOR_STATUS,
    advance_order_progress,
    is_terminal,
    transition_prescription,
)
from app.services.pharmacy_backend_service import PharmacyBackendService, backend_for

logger = logging.getLogger(__name__)

STATUS_CHECKED_ACTION = "PRESCRIPTION_STATUS_CHECKED"
STATUS_CHECK_FAILED_ACTION = "PRESCRIPTION_STATUS_CHECK_FAILED"
WEBHOOK_ACTION = "WEBHOOK_STATUS_UPDATE"


class PrescriptionStatusService:
    def __init__(self, session: AsyncSession, digitalrx: DigitalRxClient):
        self.session = session
        self.digitalrx = digitalrx
        self.prescriptions = PrescriptionCRUD(session)
        self.audit = SystemLogCRUD(session)

    async def _apply(self, prescription: Prescription, status_data: dict) -> tuple:
        """Returns (old_status, changed). Tracking number is always refreshed."""
        old_status = prescription.status
        mapped = map_digitalrx_status(status_data, old_status, prescription.tracking_number)
        prescription.tracking_number = mapped.tracking_number

        if is_terminal(old_status):
            return old_status, False

        try:
            changed = transition_prescription(prescription, mapped.new_status)
        except InvalidTransition as exc:
            logger.warning(
                f"Ignoring DigitalRx status: {exc.message}",
                extra={"prescription_id": prescription.id, "queue_id": prescription.queue_id},
            )
            return old_status, False

        if changed and prescription.payment_transaction_id:
            progress = ORDER_PROGRESS_FOR_STATUS.get(prescription.status)
            if progress:
                transaction = await PaymentTransactionCRUD(self.session).get_by_id(
                    prescription.payment_transaction_id
                )
                advance_order_progress(transaction, progress)

        return old_status, changed

    async def check_status(self, *, prescription_id: UUID, user: User) -> dict:
        prescription = await self.prescriptions.get_by_id(prescription_id)
        if not prescription:
            raise ResourceNotFound("Prescription not found")

        if prescription.prescriber_id != user.id:
            raise NotAuthorized("You can only check your own prescriptions")

        if not prescription.queue_id:
            raise InvalidRequest("Prescription has not been submitted to a pharmacy")

        backend = await PharmacyBackendService(self.session).resolve(prescription.pharmacy_id)

        try:
            status_data = await self.digitalrx.fetch_status(backend, prescription.queue_id)
        except DigitalRxError as exc:
            await self.audit.record(
                action=STATUS_CHECK_FAILED_ACTION,
                status=LogStatus.ERROR,
                details=exc.message,
                queue_id=prescription.queue_id,
                user_id=user.id,
            )
            raise

        old_status, changed = await self._apply(prescription, status_data)

        self.audit.add(
            action=STATUS_CHECKED_ACTION,
            status=LogStatus.SUCCESS,
            details=f"{old_status.value} -> {prescription.status.value}",
            queue_id=prescription.queue_id,
            user_id=user.id,
        )
        await self.session.commit()

        return {
            "success": True,
            "prescription_id": prescription.id,
            "queue_id": prescription.queue_id,
            "old_status": old_status,
            "new_status": prescription.status,
            "tracking_number": prescription.tracking_number,
            "changed": changed,
        }

    async def check_many(self, *, user: User, prescription_ids: list[UUID] | None = None) -> dict:
        """
        Status for several submitted prescriptions in one pass.

        Backends are resolved up front with a single query; one failing
        queue id is reported in its own row and does not stop the rest.
        """
        prescriptions = await self.prescriptions.get_with_queue_ids(
            prescription_ids=prescription_ids,
            prescriber_id=user.id,
        )
        backends = await PharmacyBackendService(self.session).resolve_many(
            rx.pharmacy_id for rx in prescriptions
        )

        statuses = []
        for prescription in prescriptions:
            row = {
                "prescription_id": prescription.id,
                "queue_id": prescription.queue_id,
            }

            backend = backend_for(backends, prescription.pharmacy_id)
            if not backend:
                statuses.append({**row, "success": False, "error": "Pharmacy backend not configured"})
                continue

            try:
                status_data = await self.digitalrx.fetch_status(backend, prescription.queue_id)
            except DigitalRxError as exc:
                self.audit.add(
                    action=STATUS_CHECK_FAILED_ACTION,
                    status=LogStatus.ERROR,
                    details=exc.message,
                    queue_id=prescription.queue_id,
                    user_id=user.id,
                )
                statuses.append({**row, "success": False, "error": exc.message})
                continue

            _, changed = await self._apply(prescription, status_data)
            statuses.append({
                **row,
                "success": True,
                "status": prescription.status,
                "tracking_number": prescription.tracking_number,
                "changed": changed,
            })

        await self.session.commit()
        return {"success": True, "statuses": statuses}

    async def apply_webhook(self, payload: dict) -> dict:
        """
        DigitalRx push update. Accepts DigitalRx's own shape
        ({QueueID, RxStatus, TrackingNumber}) or the simple
        {queue_id, new_status, tracking_number} one.
        """
        queue_id = payload.get("QueueID") or payload.get("queue_id")
        if not queue_id:
            raise InvalidRequest("QueueID is required")

        prescription = await self.prescriptions.get_by_queue_id(str(queue_id))
        if not prescription:
            raise ResourceNotFound("Prescription not found")

        raw_status = payload.get("RxStatus") or (payload.get("new_status") or "").replace("_", " ")
        status_data = {
            "Status": raw_status or None,
            "TrackingNumber": payload.get("TrackingNumber") or payload.get("tracking_number"),
        }

        old_status, changed = await self._apply(prescription, status_data)

        self.audit.add(
            action=WEBHOOK_ACTION,
            status=LogStatus.SUCCESS,
            details=f"{old_status.value} -> {prescription.status.value} (DigitalRx: {raw_status or 'n/a'})",
            queue_id=prescription.queue_id,
        )
        await self.session.commit()

        return {
            "success": True,
            "prescription_id": prescription.id,
            "old_status": old_status,
            "new_status": prescription.status,
            "changed": changed,
        }
