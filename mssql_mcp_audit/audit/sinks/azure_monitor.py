"""Azure Log Analytics sink (HTTP Data Collector API).

Every request is signed with the workspace shared key::

    StringToSign = "POST\\n" + len(body) + "\\napplication/json\\n"
                   + "x-ms-date:" + rfc1123date + "\\n/api/logs"
    Authorization = "SharedKey <workspaceId>:" + base64(HMAC-SHA256(key, StringToSign))
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from email.utils import formatdate
from typing import List, Optional

import httpx

from mssql_mcp_audit.audit.models import AuditLogEntry
from mssql_mcp_audit.audit.sinks.base import BatchingSink, encode_batch
from mssql_mcp_audit.constants import (
    AZURE_API_VERSION,
    AZURE_DEFAULT_LOG_TYPE,
    AZURE_RESOURCE,
    DEFAULT_BATCH_SIZE,
    DEFAULT_FLUSH_INTERVAL_MS,
)
from mssql_mcp_audit.errors import ConfigurationError

logger = logging.getLogger(__name__)


def rfc1123_date() -> str:
    return formatdate(usegmt=True)


def build_signature(key: bytes, content_length: int, date: str) -> str:
    """Base64 HMAC-SHA256 of the canonical string, keyed with the decoded shared key."""
    string_to_sign = "\n".join(
        [
            "POST",
            str(content_length),
            "application/json",
            f"x-ms-date:{date}",
            AZURE_RESOURCE,
        ]
    )
    digest = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class AzureMonitorSink(BatchingSink):
    """Batch entries into a Log Analytics custom log table.

    Each flush makes one signed request; failures are logged and the batch
    dropped without a sink-level retry.
    """

    type = "azure-monitor"

    def __init__(
        self,
        workspace_id: str,
        shared_key: str,
        *,
        log_type: str = AZURE_DEFAULT_LOG_TYPE,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(batch_size=batch_size, flush_interval_ms=flush_interval_ms)
        try:
            self._key = base64.b64decode(shared_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError(
                f"Azure Monitor shared key for workspace '{workspace_id}' is not valid base64."
            ) from exc
        self._workspace_id = workspace_id
        self._log_type = log_type
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def url(self) -> str:
        return (
            f"https://{self._workspace_id}.ods.opinsights.azure.com"
            f"{AZURE_RESOURCE}?api-version={AZURE_API_VERSION}"
        )

    def build_headers(self, content_length: int, date: str) -> dict:
        signature = build_signature(self._key, content_length, date)
        return {
            "Content-Type": "application/json",
            "Log-Type": self._log_type,
            "x-ms-date": date,
            "Authorization": f"SharedKey {self._workspace_id}:{signature}",
        }

    async def _deliver(self, batch: List[AuditLogEntry]) -> None:
        body = encode_batch(batch).encode("utf-8")
        headers = self.build_headers(len(body), rfc1123_date())
        try:
            response = await self._client.post(self.url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.error(
                "Azure Monitor send of %d audit entries failed: %s", len(batch), exc
            )
            return
        if not response.is_success:
            logger.error(
                "Azure Monitor rejected %d audit entries: HTTP %d %s",
                len(batch),
                response.status_code,
                response.text,
            )

    async def _release(self) -> None:
        if self._owns_client:
            await self._client.aclose()
