import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.enums import SideEffectKind
from app.services.digitalrx.client import DigitalRxClient
from app.services.notification.notification_service import NotificationService
from app.services.outbox import OutboxService
from app.services.payment_service import PaymentService
from app.services.pharmacy_submission_service import PharmacySubmissionService

logger = logging.getLogger(__name__)


class SideEffectDispatcher:
    """Routes an outbox row to the service that performs it."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        digitalrx: DigitalRxClient,
        notification_service: NotificationService,
    ):
        self.session = session
        self.digitalrx = digitalrx
        self.notification_service = notification_service

    async def __call__(self, kind: SideEffectKind, payload: dict) -> None:
        if kind == SideEffectKind.SUBMIT_TO_PHARMACY:
            await PharmacySubmissionService(self.session, self.digitalrx).submit(
                prescription_id=UUID(payload["prescription_id"])
            )
            return

        payments = PaymentService(
            self.session, self.notification_service, digitalrx=self.digitalrx
        )

        if kind == SideEffectKind.SEND_CONFIRMATION_EMAIL:
            await payments.send_confirmation_email(
                transaction_id=UUID(payload["transaction_id"])
            )
            return

        if kind == SideEffectKind.GENERATE_PAYMENT_LINK:
            await payments.generate_link(
                prescription_id=UUID(payload["prescription_id"]),
                consultation_fee_cents=payload.get("consultation_fee_cents", 0),
                medication_cost_cents=payload.get("medication_cost_cents", 0),
                shipping_fee_cents=payload.get("shipping_fee_cents", 0),
                description=payload.get("description"),
                send_email=payload.get("send_email", True),
            )
            return

        raise ValueError(f"Unknown side effect kind: {kind}")


async def drain_outbox(
    session_factory: async_sessionmaker,
    *,
    digitalrx: DigitalRxClient,
    notification_service: NotificationService,
    limit: int = 50,
) -> dict | None:
    """
    Runs due outbox rows in a fresh session. Used as a FastAPI background
    task and from the Celery worker; failures stay on the rows themselves.
    """
    try:
        async with session_factory() as session:
            dispatcher = SideEffectDispatcher(
                session,
                digitalrx=digitalrx,
                notification_service=notification_service,
            )
            return await OutboxService(session).process_due(dispatcher, limit=limit)
    except Exception:
        logger.exception("Outbox drain failed")
        return None
