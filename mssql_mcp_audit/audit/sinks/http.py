"""Generic batching HTTP sink: JSON array bodies, one retry per batch."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from mssql_mcp_audit.audit.models import AuditLogEntry
from mssql_mcp_audit.audit.sinks.base import BatchingSink, encode_batch
from mssql_mcp_audit.constants import DEFAULT_BATCH_SIZE, DEFAULT_FLUSH_INTERVAL_MS
from mssql_mcp_audit.errors import DeliveryError

logger = logging.getLogger(__name__)


class HttpSink(BatchingSink):
    """POST (or PUT) batches of entries to a collector URL.

    A failed batch is retried exactly once; if the retry fails too the batch
    is dropped and the failure logged.
    """

    type = "http"

    def __init__(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        method: str = "POST",
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(batch_size=batch_size, flush_interval_ms=flush_interval_ms)
        self._url = url
        self._headers = dict(headers or {})
        self._method = method.upper()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _deliver(self, batch: List[AuditLogEntry]) -> None:
        body = encode_batch(batch).encode("utf-8")
        try:
            await self._post(body)
        except Exception as exc:
            logger.warning("HTTP audit delivery to %s failed (%s); retrying once.", self._url, exc)
            try:
                await self._post(body)
            except Exception as retry_exc:
                logger.error(
                    "Dropping %d audit entries for %s after retry: %s",
                    len(batch),
                    self._url,
                    retry_exc,
                )

    async def _post(self, body: bytes) -> None:
        headers = {"Content-Type": "application/json", **self._headers}
        response = await self._client.request(self._method, self._url, content=body, headers=headers)
        if not response.is_success:
            raise DeliveryError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                sink_type=self.type,
                status_code=response.status_code,
            )

    async def _release(self) -> None:
        if self._owns_client:
            await self._client.aclose()
