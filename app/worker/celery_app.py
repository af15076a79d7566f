import logging

from celery import Celery, signals
from celery.schedules import crontab

from app.core.config import settings
from app.core.logging import setup_logging

logger = logging.getLogger(__name__)

celery_app = Celery(
    "rx_lifecycle",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.worker.tasks"],
)

celery_app.conf.update(
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

REFILL_TASK = "app.worker.tasks.run_refill_check"
OUTBOX_TASK = "app.worker.tasks.drain_side_effects"

_schedules_registered = False


@signals.setup_logging.connect
def configure_worker_logging(**kwargs):
    setup_logging()


@celery_app.on_after_configure.connect
def register_schedules(sender, **kwargs):
    """Registers the beat schedule once per process, however often config reloads."""
    global _schedules_registered
    if _schedules_registered:
        return

    # Daily at 08:00 UTC
    sender.add_periodic_task(
        crontab(minute=0, hour=8),
        sender.signature(REFILL_TASK),
        name="refill-check",
    )
    sender.add_periodic_task(
        60.0,
        sender.signature(OUTBOX_TASK),
        name="drain-side-effects",
    )

    _schedules_registered = True
    logger.info("Beat schedules registered")
