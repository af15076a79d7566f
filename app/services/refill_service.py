import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.prescription import PrescriptionCRUD
from app.crud.system_log import CronRunLogger
from app.db.enums import (
    PrescriptionPaymentStatus,
    PrescriptionStatus,
    PrescriptionType,
    SideEffectKind,
)
from app.models.prescription import Prescription
from app.services.outbox import OutboxService

logger = logging.getLogger(__name__)

JOB_NAME = "refill-check"


def has_refills_left(prescription: Prescription) -> bool:
    return (prescription.total_refills_to_date or 0) < (prescription.refills or 0)


class RefillService:
    """
    Creates refill prescriptions for originals whose next refill date has
    arrived, and queues a payment link for each.

    Every refill is committed on its own, so a failing row only rolls back
    itself and a rerun never duplicates the rows that already went through.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.prescriptions = PrescriptionCRUD(session)
        self.outbox = OutboxService(session)

    async def run(self, now: datetime | None = None) -> dict:
        now = now or datetime.now(timezone.utc)
        run = await CronRunLogger.start(self.session, JOB_NAME)

        try:
            candidates = await self.prescriptions.get_refill_candidates(now)
        except Exception as exc:
            await self.session.rollback()
            logger.exception("Refill candidate query failed", extra={"job": JOB_NAME})
            await run.error(str(exc))
            raise

        due_ids = [rx.id for rx in candidates if has_refills_left(rx)]
        logger.info(
            f"{len(due_ids)} of {len(candidates)} prescriptions due for refill",
            extra={"job": JOB_NAME},
        )

        created: list[UUID] = []
        errors: list[str] = []

        for prescription_id in due_ids:
            try:
                refill_id = await self._create_refill(prescription_id, now)
                await self.session.commit()
            except Exception as exc:
                await self.session.rollback()
                logger.exception(
                    "Refill creation failed",
                    extra={"job": JOB_NAME, "prescription_id": prescription_id},
                )
                errors.append(f"{prescription_id}: {exc}")
                continue

            if refill_id:
                created.append(refill_id)

        if not errors:
            await run.success(len(created))
        elif created:
            await run.partial(len(created), len(errors), "; ".join(errors)[:2000])
        else:
            await run.error("; ".join(errors)[:2000], failed=len(errors))

        return {
            "success": not errors,
            "processed": len(created),
            "failed": len(errors),
            "refill_ids": created,
        }

    async def _create_refill(self, prescription_id: UUID, now: datetime) -> UUID | None:
        # Row lock; a concurrent run waits here and then sees the advanced date
        original = await self.prescriptions.get_by_id(prescription_id, for_update=True)
        if not original or not has_refills_left(original) or original.next_refill_date is None:
            return None

        next_refill = original.next_refill_date
        if next_refill.tzinfo is None:
            next_refill = next_refill.replace(tzinfo=timezone.utc)
        if next_refill > now:
            return None

        original.total_refills_to_date = (original.total_refills_to_date or 0) + 1
        original.next_refill_date = next_refill + timedelta(days=original.refill_frequency_days or 0)

        refill = Prescription(
            id=uuid4(),
            prescriber_id=original.prescriber_id,
            patient_id=original.patient_id,
            pharmacy_id=original.pharmacy_id,
            medication=original.medication,
            dosage=original.dosage,
            quantity=original.quantity,
            sig=original.sig,
            pharmacy_notes=original.pharmacy_notes,
            patient_price=original.patient_price,
            profit_cents=original.profit_cents,
            shipping_fee_cents=original.shipping_fee_cents,
            refills=original.refills,
            status=PrescriptionStatus.PENDING_PAYMENT,
            payment_status=PrescriptionPaymentStatus.PENDING,
            queue_id=None,
            prescription_type=PrescriptionType.REFILL,
            parent_prescription_id=original.id,
        )
        self.session.add(refill)

        medication_cents = int((Decimal(original.patient_price or 0) * 100).to_integral_value())

        await self.outbox.enqueue(
            SideEffectKind.GENERATE_PAYMENT_LINK,
            {
                "prescription_id": str(refill.id),
                "consultation_fee_cents": original.profit_cents or 0,
                "medication_cost_cents": medication_cents,
                "shipping_fee_cents": original.shipping_fee_cents or 0,
                "description": f"Refill: {original.medication}",
                "send_email": True,
            },
            f"generate_payment_link:{refill.id}",
        )

        logger.info(
            f"Refill {original.total_refills_to_date}/{original.refills} created",
            extra={"job": JOB_NAME, "prescription_id": original.id},
        )
        return refill.id
