from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.enums import CronRunStatus, LogStatus
from app.models.cron_run import CronRun
from app.models.system_log import SystemLog


class SystemLogCRUD:
    def __init__(self, session: AsyncSession):
        self.session = session

    def add(
        self,
        *,
        action: str,
        status: LogStatus,
        details: str | None = None,
        queue_id: str | None = None,
        user_id: UUID | None = None,
    ) -> SystemLog:
        """Stages an audit row; it lands with the caller's next commit."""
        entry = SystemLog(
            action=action,
            status=status,
            details=details,
            queue_id=queue_id,
            user_id=user_id,
        )
        self.session.add(entry)
        return entry

    async def record(self, **kwargs) -> SystemLog:
        entry = self.add(**kwargs)
        await self.session.commit()
        return entry


class CronRunLogger:
    """
    Records one scheduled-job run in cron_runs.

        run = await CronRunLogger.start(session, "refill-check")
        ...
        await run.success(processed)
    """

    def __init__(self, session: AsyncSession, run_id: UUID):
        self.session = session
        self.run_id = run_id

    @classmethod
    async def start(cls, session: AsyncSession, job_name: str) -> "CronRunLogger":
        run = CronRun(job_name=job_name, status=CronRunStatus.RUNNING)
        session.add(run)
        await session.commit()
        return cls(session, run.id)

    async def _finish(self, status: CronRunStatus, processed: int, failed: int, error: str | None):
        # Plain UPDATE: the job may have rolled the session back just before this
        await self.session.execute(
            update(CronRun)
            .where(CronRun.id == self.run_id)
            .values(
                status=status,
                processed=processed,
                failed=failed,
                error_message=error,
                finished_at=datetime.now(timezone.utc),
            )
        )
        await self.session.commit()

    async def success(self, processed: int):
        await self._finish(CronRunStatus.SUCCESS, processed, 0, None)

    async def partial(self, processed: int, failed: int, error: str | None = None):
        await self._finish(CronRunStatus.PARTIAL, processed, failed, error)

    async def error(self, message: str, processed: int = 0, failed: int = 0):
        await self._finish(CronRunStatus.ERROR, processed, failed, message)
