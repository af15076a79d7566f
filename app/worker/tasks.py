import asyncio
import logging

from app.core.logging import request_id_var
from app.db.sessions import worker_session_factory
from app.services.digitalrx.client import DigitalRxClient
from app.services.notification.notification_service import NotificationService
from app.services.refill_service import JOB_NAME, RefillService
from app.services.side_effects import drain_outbox
from app.worker.celery_app import OUTBOX_TASK, REFILL_TASK, celery_app

logger = logging.getLogger(__name__)


async def _run_refill_check() -> dict:
    async with worker_session_factory() as session_factory:
        async with session_factory() as session:
            summary = await RefillService(session).run()

        # Payment links for the new refills go out right away
        await drain_outbox(
            session_factory,
            digitalrx=DigitalRxClient(),
            notification_service=NotificationService(),
        )

    return summary


async def _drain_side_effects() -> dict | None:
    async with worker_session_factory() as session_factory:
        return await drain_outbox(
            session_factory,
            digitalrx=DigitalRxClient(),
            notification_service=NotificationService(),
        )


@celery_app.task(name=REFILL_TASK)
def run_refill_check() -> dict:
    request_id_var.set(JOB_NAME)
    summary = asyncio.run(_run_refill_check())
    summary["refill_ids"] = [str(refill_id) for refill_id in summary["refill_ids"]]
    logger.info(
        f"Refill check finished: {summary['processed']} created, {summary['failed']} failed",
        extra={"job": JOB_NAME},
    )
    return summary


@celery_app.task(name=OUTBOX_TASK)
def drain_side_effects() -> dict | None:
    request_id_var.set("outbox")
    return asyncio.run(_drain_side_effects())
