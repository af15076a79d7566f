import logging
import re
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.encryption import reveal
from app.core.exceptions import PharmacyConfigurationError
from app.models.pharmacy import DIGITALRX_SYSTEM, PharmacyBackend

logger = logging.getLogger(__name__)

DEFAULT_BACKEND_KEY = "__default__"


@dataclass(frozen=True)
class ResolvedBackend:
    api_key: str
    base_url: str
    store_id: str | None


def _repair_url(url: str) -> str:
    # Admin-entered URLs sometimes arrive as "https//:host" or "https://:host"
    url = re.sub(r"^https?//:", "https://", url)
    url = re.sub(r"^https?://:", "https://", url)
    return re.sub(r"^https?///+", "https://", url)


def to_resolved(row: PharmacyBackend) -> ResolvedBackend:
    return ResolvedBackend(
        api_key=reveal(row.api_key_encrypted),
        base_url=_repair_url(row.api_url) if row.api_url else settings.digitalrx_base_url,
        store_id=row.store_id,
    )


class PharmacyBackendService:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _active_digitalrx(self):
        return select(PharmacyBackend).where(
            PharmacyBackend.is_active.is_(True),
            PharmacyBackend.system_type == DIGITALRX_SYSTEM,
        )

    async def _default_row(self) -> PharmacyBackend | None:
        return await self.session.scalar(
            self._active_digitalrx().order_by(PharmacyBackend.created_at).limit(1)
        )

    async def resolve(self, pharmacy_id: UUID | None) -> ResolvedBackend:
        """
        Credentials for the pharmacy's own DigitalRx backend, falling back to
        any active DigitalRx backend.
        """
        if pharmacy_id:
            row = await self.session.scalar(
                self._active_digitalrx()
                .where(PharmacyBackend.pharmacy_id == pharmacy_id)
                .limit(1)
            )
            if row:
                return to_resolved(row)

            logger.info(f"No DigitalRx backend for pharmacy {pharmacy_id}, using default")

        row = await self._default_row()
        if not row:
            raise PharmacyConfigurationError("Pharmacy backend not configured")

        return to_resolved(row)

    async def resolve_many(self, pharmacy_ids) -> dict[str, ResolvedBackend]:
        """
        One query for every pharmacy id plus one for the fallback.

        Keys are str(pharmacy_id); the fallback sits under DEFAULT_BACKEND_KEY.
        """
        backends: dict[str, ResolvedBackend] = {}
        unique_ids = {pid for pid in pharmacy_ids if pid}

        if unique_ids:
            result = await self.session.execute(
                self._active_digitalrx().where(PharmacyBackend.pharmacy_id.in_(list(unique_ids)))
            )
            for row in result.scalars():
                backends.setdefault(str(row.pharmacy_id), to_resolved(row))

        default_row = await self._default_row()
        if default_row:
            backends[DEFAULT_BACKEND_KEY] = to_resolved(default_row)

        return backends


def backend_for(backends: dict[str, ResolvedBackend], pharmacy_id) -> ResolvedBackend | None:
    if pharmacy_id and str(pharmacy_id) in backends:
        return backends[str(pharmacy_id)]
    return backends.get(DEFAULT_BACKEND_KEY)
