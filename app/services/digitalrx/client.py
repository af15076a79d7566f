import json
import logging
import re

import httpx

from app.core.config import settings
from app.core.exceptions import DigitalRxError
from app.services.pharmacy_backend_service import ResolvedBackend

logger = logging.getLogger(__name__)

_RX_PREFIX = re.compile(r"^RX-", re.IGNORECASE)


def strip_queue_prefix(queue_id: str) -> str:
    """Internal queue ids may carry an "RX-" prefix; DigitalRx wants digits only."""
    return _RX_PREFIX.sub("", str(queue_id))


class DigitalRxClient:
    """
    Thin async wrapper over the two DigitalRx endpoints we use.

    `transport` lets tests swap in an httpx.MockTransport.
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def _post(self, backend: ResolvedBackend, path: str, body: dict) -> httpx.Response:
        url = f"{backend.base_url.rstrip('/')}/{path}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                return await client.post(
                    url,
                    json=body,
                    headers={"Authorization": backend.api_key},
                )
        except httpx.HTTPError as exc:
            logger.error(f"DigitalRx request to {path} failed: {exc}")
            raise DigitalRxError(f"DigitalRx unreachable: {exc}") from exc


    async def submit(self, backend: ResolvedBackend, payload: dict) -> str:
        """POST /RxWebRequest. Returns the QueueID DigitalRx assigned."""
        response = await self._post(backend, "RxWebRequest", payload)

        if response.is_error:
            logger.error(f"DigitalRx submission rejected: {response.status_code} {response.text}")
            raise DigitalRxError(
                f"DigitalRx API error: {response.status_code}",
                status=response.status_code,
                body=response.text[:500],
            )

        try:
            data = response.json()
        except json.JSONDecodeError:
            raise DigitalRxError(
                "Invalid response from DigitalRx (not JSON)",
                body=response.text[:200],
            ) from None

        queue_id = data.get("QueueID") or data.get("queueId") or data.get("ID")
        if not queue_id:
            raise DigitalRxError("DigitalRx did not return a QueueID", body=data)

        return str(queue_id)


    async def fetch_status(self, backend: ResolvedBackend, queue_id: str) -> dict:
        """POST /RxRequestStatus for one queue id."""
        body = {
            "StoreID": backend.store_id,
            "QueueID": strip_queue_prefix(queue_id),
        }
        response = await self._post(backend, "RxRequestStatus", body)

        if response.is_error:
            raise DigitalRxError(
                f"API error: {response.status_code}",
                status=response.status_code,
                body=response.text[:500],
            )

        try:
            data = response.json()
        except json.JSONDecodeError:
            raise DigitalRxError(
                "Invalid response from DigitalRx (not JSON)",
                body=response.text[:200],
            ) from None

        if data.get("Error"):
            raise DigitalRxError(str(data["Error"]))

        return data


    async def ping(self, base_url: str | None = None) -> bool:
        """Reachability probe for health checks. Any HTTP answer counts as up."""
        url = base_url or settings.digitalrx_base_url
        try:
            async with httpx.AsyncClient(
                timeout=settings.health_check_timeout_seconds,
                transport=self.transport,
            ) as client:
                await client.get(url)
            return True
        except httpx.HTTPError:
            return False
