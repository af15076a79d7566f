from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.enums import PaymentStatus
from app.models.payment_transaction import PaymentTransaction
from app.services.lifecycle import payment_sources


class PaymentTransactionCRUD:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, transaction_id: UUID) -> PaymentTransaction | None:
        return await self.session.get(PaymentTransaction, transaction_id)

    async def get_by_token(self, payment_token: str) -> PaymentTransaction | None:
        return await self.session.scalar(
            select(PaymentTransaction).where(PaymentTransaction.payment_token == payment_token)
        )

    async def get_by_ref_id(self, ref_id: str) -> PaymentTransaction | None:
        return await self.session.scalar(
            select(PaymentTransaction).where(PaymentTransaction.authnet_ref_id == ref_id)
        )

    async def get_by_gateway_id(self, gateway_transaction_id: str) -> PaymentTransaction | None:
        return await self.session.scalar(
            select(PaymentTransaction).where(
                PaymentTransaction.authnet_transaction_id == gateway_transaction_id
            )
        )

    async def get_open_for_prescription(self, prescription_id: UUID) -> list[PaymentTransaction]:
        """Transactions for the prescription that could still be paid."""
        result = await self.session.execute(
            select(PaymentTransaction).where(
                PaymentTransaction.prescription_id == prescription_id,
                PaymentTransaction.payment_status.in_(list(payment_sources(PaymentStatus.COMPLETED))),
            )
        )
        return list(result.scalars().all())

    async def complete_if_open(self, transaction_id: UUID, **values) -> bool:
        """
        Marks the transaction completed unless something already did.

        One conditional UPDATE, so two concurrent webhook deliveries cannot
        both win. Returns False when no row changed.
        """
        result = await self.session.execute(
            update(PaymentTransaction)
            .where(
                PaymentTransaction.id == transaction_id,
                PaymentTransaction.payment_status.in_(list(payment_sources(PaymentStatus.COMPLETED))),
            )
            .values(payment_status=PaymentStatus.COMPLETED, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def add(self, transaction: PaymentTransaction) -> PaymentTransaction:
        self.session.add(transaction)
        return transaction
