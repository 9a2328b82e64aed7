"""Shared HTTP plumbing for CRM source adapters.

Provides CRMHttpAdapter with an httpx.AsyncClient per read, bearer-token
auth, and tenacity retry (3 attempts, exponential backoff 1-10s) on
transport errors, 429 and 5xx responses. Any other HTTP failure surfaces
as ReadFailure so the engine aborts the run before writing anything.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.app.config import get_settings
from src.app.sync.adapters.base import SourceAdapter
from src.app.sync.exceptions import ReadFailure
from src.app.sync.schemas import ExternalRecord, IntegrationRead, LinkRead, SourceReadResult

logger = structlog.get_logger(__name__)


def _is_transient(exc: BaseException) -> bool:
    """Retry on network failures, rate limiting and server errors only."""
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


_crm_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)


class CRMHttpAdapter(SourceAdapter):
    """Base class for REST-backed CRM adapters.

    Subclasses provide the base URL and `_fetch`, which returns
    ExternalRecords already decoded from the provider's payload.

    Args:
        transport: Optional httpx transport (tests pass httpx.MockTransport).
        timeout: Request timeout in seconds. Defaults to
            settings.SYNC_HTTP_TIMEOUT_SECONDS.
    """

    page_size = 100

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self._transport = transport
        self._timeout = timeout or get_settings().SYNC_HTTP_TIMEOUT_SECONDS

    @abstractmethod
    def base_url(self, integration: IntegrationRead) -> str:
        """API root for this integration."""
        ...

    @abstractmethod
    async def _fetch(
        self,
        client: httpx.AsyncClient,
        object_type: str,
        ids: Sequence[str] | None,
        since: datetime | None,
    ) -> list[ExternalRecord]:
        ...

    def _client(self, integration: IntegrationRead) -> httpx.AsyncClient:
        """Create a new httpx client authenticated with the integration token."""
        return httpx.AsyncClient(
            base_url=self.base_url(integration),
            headers={
                "Authorization": f"Bearer {integration.access_token}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    @_crm_retry
    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> dict:
        response = await client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    @_crm_retry
    async def _post_json(self, client: httpx.AsyncClient, url: str, body: dict) -> dict:
        response = await client.post(url, json=body)
        response.raise_for_status()
        return response.json()

    async def read(
        self,
        integration: IntegrationRead,
        link: LinkRead,
        ids: Sequence[str] | None = None,
        since: datetime | None = None,
    ) -> SourceReadResult:
        """Fetch records of the link's object type, optionally only ids."""
        object_type = link.object_type or self.default_object_type
        if object_type not in self.object_types:
            raise ReadFailure(
                f"{self.provider.value} does not support object type {object_type!r}"
            )
        if ids is not None and not ids:
            return SourceReadResult(records=[], total=0)

        try:
            async with self._client(integration) as client:
                records = await self._fetch(client, object_type, ids, since)
        except httpx.HTTPStatusError as exc:
            body = exc.response.text[:500]
            raise ReadFailure(
                f"{self.provider.value} API request failed "
                f"({exc.response.status_code}): {body}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ReadFailure(f"{self.provider.value} API request failed: {exc}") from exc

        logger.info(
            "crm.read",
            provider=self.provider.value,
            object_type=object_type,
            selective=ids is not None,
            records=len(records),
        )
        return SourceReadResult(records=records, total=len(records))
