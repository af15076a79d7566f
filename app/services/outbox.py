"""
Transactional outbox for work that follows a committed state change.

Rows are staged with `OutboxService.enqueue` inside the caller's
transaction and drained by `process_due`. Delivery is at-least-once: the
dispatched handlers check their own completion markers before acting.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.system_log import SystemLogCRUD
from app.db.enums import LogStatus, SideEffectKind, SideEffectStatus
from app.models.side_effect import SideEffect

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 6
BASE_DELAY_SECONDS = 30
MAX_DELAY_SECONDS = 60 * 60
CLAIM_LEASE = timedelta(minutes=5)

Dispatcher = Callable[[SideEffectKind, dict], Awaitable[None]]


def retry_delay(attempts: int) -> timedelta:
    return timedelta(seconds=min(BASE_DELAY_SECONDS * 2 ** attempts, MAX_DELAY_SECONDS))


class OutboxService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, kind: SideEffectKind, payload: dict, dedupe_key: str) -> SideEffect | None:
        """
        Stages a pending row; it lands with the caller's next commit.
        Returns None when a row with the same dedupe key already exists.
        """
        existing = await self.session.scalar(
            select(SideEffect.id).where(SideEffect.dedupe_key == dedupe_key)
        )
        if existing:
            logger.info(f"Side effect {dedupe_key} already queued")
            return None

        effect = SideEffect(
            kind=kind,
            payload=payload,
            dedupe_key=dedupe_key,
            status=SideEffectStatus.PENDING,
            attempts=0,
            next_attempt_at=datetime.now(timezone.utc),
        )
        self.session.add(effect)
        return effect

    async def _claim_due(self, now: datetime, limit: int) -> list[tuple]:
        result = await self.session.execute(
            select(SideEffect.id, SideEffect.kind, SideEffect.payload, SideEffect.attempts)
            .where(
                SideEffect.status == SideEffectStatus.PENDING,
                SideEffect.next_attempt_at <= now,
            )
            .order_by(SideEffect.next_attempt_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        rows = list(result.all())

        # Lease the rows so a concurrent drain skips them; an abandoned lease just expires
        if rows:
            await self.session.execute(
                update(SideEffect)
                .where(SideEffect.id.in_([row[0] for row in rows]))
                .values(next_attempt_at=now + CLAIM_LEASE)
            )
        await self.session.commit()
        return rows

    async def process_due(self, dispatch: Dispatcher, limit: int = 50) -> dict:
        now = datetime.now(timezone.utc)
        due = await self._claim_due(now, limit)

        summary = {"processed": 0, "failed": 0, "dead": 0}

        for effect_id, kind, payload, attempts in due:
            try:
                await dispatch(kind, payload)
            except Exception as exc:
                await self.session.rollback()
                dead = await self._record_failure(effect_id, kind, attempts + 1, exc)
                summary["dead" if dead else "failed"] += 1
                continue

            await self.session.execute(
                update(SideEffect)
                .where(SideEffect.id == effect_id)
                .values(status=SideEffectStatus.DONE, attempts=attempts + 1, last_error=None)
            )
            await self.session.commit()
            summary["processed"] += 1

        if due:
            logger.info(
                f"Outbox run: {summary['processed']} done, "
                f"{summary['failed']} retrying, {summary['dead']} dead"
            )
        return summary

    async def _record_failure(self, effect_id, kind: SideEffectKind, attempts: int, exc: Exception) -> bool:
        error = str(getattr(exc, "message", None) or exc)[:1000]
        dead = attempts >= MAX_ATTEMPTS

        values = {"attempts": attempts, "last_error": error}
        if dead:
            values["status"] = SideEffectStatus.DEAD
        else:
            values["next_attempt_at"] = datetime.now(timezone.utc) + retry_delay(attempts)

        await self.session.execute(
            update(SideEffect).where(SideEffect.id == effect_id).values(**values)
        )

        if dead:
            logger.error(f"Side effect {kind.value} {effect_id} is dead after {attempts} attempts: {error}")
            SystemLogCRUD(self.session).add(
                action="SIDE_EFFECT_DEAD",
                status=LogStatus.ERROR,
                details=f"{kind.value} {effect_id}: {error}",
            )
        else:
            logger.warning(f"Side effect {kind.value} {effect_id} failed (attempt {attempts}): {error}")

        await self.session.commit()
        return dead
