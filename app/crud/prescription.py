from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.enums import PrescriptionType
from app.models.prescription import Prescription
from app.services.digitalrx.client import strip_queue_prefix


class PrescriptionCRUD:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, prescription_id: UUID, *, for_update: bool = False) -> Prescription | None:
        if for_update:
            return await self.session.scalar(
                select(Prescription)
                .where(Prescription.id == prescription_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        return await self.session.get(Prescription, prescription_id)

    async def get_by_queue_id(self, queue_id: str) -> Prescription | None:
        digits = strip_queue_prefix(queue_id)
        return await self.session.scalar(
            select(Prescription)
            .where(or_(
                Prescription.queue_id == queue_id,
                Prescription.queue_id == digits,
                Prescription.queue_id == f"RX-{digits}",
            ))
            .limit(1)
        )

    async def get_with_queue_ids(
        self,
        *,
        prescription_ids: list[UUID] | None = None,
        prescriber_id: UUID | None = None,
    ):
        """Prescriptions that have been submitted (carry a queue id)."""
        query = select(Prescription).where(Prescription.queue_id.is_not(None))

        if prescription_ids:
            query = query.where(Prescription.id.in_(prescription_ids))
        if prescriber_id:
            query = query.where(Prescription.prescriber_id == prescriber_id)

        result = await self.session.execute(query.order_by(Prescription.created_at.desc()))
        return result.scalars().all()

    async def get_refill_candidates(self, now: datetime):
        """Original prescriptions whose next refill date has arrived."""
        result = await self.session.execute(
            select(Prescription)
            .where(
                Prescription.prescription_type == PrescriptionType.PRESCRIPTION,
                Prescription.next_refill_date.is_not(None),
                Prescription.next_refill_date <= now,
            )
            .order_by(Prescription.next_refill_date)
        )
        return result.scalars().all()
