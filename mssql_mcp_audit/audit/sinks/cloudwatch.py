"""AWS CloudWatch Logs sink.

``boto3`` is an optional dependency (``pip install mssql-mcp-audit[cloudwatch]``).
The client is probed once at construction: without it the sink is
permanently disabled and silently discards entries.

Delivery follows the sequence-token protocol of ``PutLogEvents``:

1. First flush creates the log group and stream (``ResourceAlreadyExists``
   counts as success) and reads the stream's ``uploadSequenceToken``.
2. Each flush sends the batch with the last known token and stores
   ``nextSequenceToken`` from the response.
3. A rejected token is replaced by the server's expected token and the
   batch retried exactly once.
"""

from __future__ import annotations

import asyncio
import importlib
import importlib.util
import logging
import re
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from mssql_mcp_audit.audit.models import AuditLogEntry
from mssql_mcp_audit.audit.sinks.base import BatchingSink
from mssql_mcp_audit.constants import APP_NAME, DEFAULT_BATCH_SIZE, DEFAULT_FLUSH_INTERVAL_MS
from mssql_mcp_audit.errors import CapabilityUnavailableError, ProtocolStateError

logger = logging.getLogger(__name__)

_ALREADY_EXISTS = "ResourceAlreadyExistsException"
_TOKEN_ERRORS = frozenset({"InvalidSequenceTokenException", "DataAlreadyAcceptedException"})
_EXPECTED_TOKEN_RE = re.compile(r"expected sequenceToken is:\s*(\S+)")


class ClientState(Enum):
    """Outcome of the constructor-time client probe."""

    READY = "ready"
    UNAVAILABLE = "unavailable"


def load_logs_client(region: Optional[str] = None) -> Any:
    """Build a boto3 ``logs`` client, or raise :class:`CapabilityUnavailableError`."""
    if importlib.util.find_spec("boto3") is None:
        raise CapabilityUnavailableError("boto3", CloudWatchSink.type)
    boto3 = importlib.import_module("boto3")
    kwargs: Dict[str, str] = {}
    if region:
        kwargs["region_name"] = region
    return boto3.client("logs", **kwargs)


def _error_code(exc: BaseException) -> str:
    """botocore puts the service error code in ``exc.response['Error']['Code']``."""
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        code = response.get("Error", {}).get("Code")
        if code:
            return str(code)
    return type(exc).__name__


def _expected_token(exc: BaseException) -> Optional[str]:
    response = getattr(exc, "response", None)
    if isinstance(response, dict) and response.get("expectedSequenceToken"):
        return str(response["expectedSequenceToken"])
    match = _EXPECTED_TOKEN_RE.search(str(exc))
    if match and match.group(1) != "null":
        return match.group(1)
    return None


def epoch_millis(timestamp: str) -> int:
    """Milliseconds since the epoch for an ISO-8601 timestamp (now if unparsable)."""
    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return int(time.time() * 1000)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return round(parsed.timestamp() * 1000)


class CloudWatchSink(BatchingSink):
    """Batch entries into a CloudWatch Logs stream.

    The boto3 client is blocking, so each service call runs on the event
    loop's default executor (``asyncio.to_thread``) and therefore on a worker
    OS thread. Only the call itself leaves the loop; the buffer, the sequence
    token and the initialization flag are read and written on the loop.

    Parameters
    ----------
    log_group_name:
        Target log group (created on first flush if missing).
    log_stream_name:
        Target stream; defaults to ``mssql-mcp-<epoch-ms>``.
    region:
        AWS region for the default client.
    client:
        Pre-built ``logs`` client; skips the boto3 probe.
    """

    type = "cloudwatch"

    def __init__(
        self,
        log_group_name: str,
        *,
        log_stream_name: Optional[str] = None,
        region: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
        client: Any = None,
    ) -> None:
        super().__init__(batch_size=batch_size, flush_interval_ms=flush_interval_ms)
        self._log_group_name = log_group_name
        self._log_stream_name = log_stream_name or f"{APP_NAME}-{int(time.time() * 1000)}"
        self._region = region
        self._sequence_token: Optional[str] = None
        self._initialized = False
        self._client, self._state = self._init_client(client)

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def log_stream_name(self) -> str:
        return self._log_stream_name

    @property
    def sequence_token(self) -> Optional[str]:
        return self._sequence_token

    def _init_client(self, client: Any) -> Tuple[Any, ClientState]:
        if client is not None:
            return client, ClientState.READY
        try:
            return load_logs_client(self._region), ClientState.READY
        except CapabilityUnavailableError as exc:
            logger.warning("%s CloudWatch audit sink disabled.", exc)
        except Exception as exc:
            logger.warning(
                "Could not create CloudWatch Logs client (%s); CloudWatch audit sink disabled.",
                exc,
            )
        return None, ClientState.UNAVAILABLE

    def _accepting(self) -> bool:
        return self._state is ClientState.READY

    async def _deliver(self, batch: List[AuditLogEntry]) -> None:
        if self._client is None:
            return
        events = [
            {"timestamp": epoch_millis(entry.timestamp), "message": entry.to_json()}
            for entry in batch
        ]
        try:
            if not self._initialized:
                await self._ensure_group_and_stream()
            await self._put_with_recovery(events)
        except Exception as exc:
            logger.error("CloudWatch send of %d audit entries failed: %s", len(batch), exc)

    async def _release(self) -> None:
        client, self._client = self._client, None
        close = getattr(client, "close", None)
        if callable(close):
            close()

    # ── Service calls ───────────────────────────────────────────────────

    async def _call(self, operation: str, **kwargs: Any) -> Dict[str, Any]:
        # boto3 is blocking; keep it off the event loop.
        method = getattr(self._client, operation)
        return await asyncio.to_thread(method, **kwargs)

    async def _ensure_group_and_stream(self) -> None:
        await self._create("create_log_group", logGroupName=self._log_group_name)
        await self._create(
            "create_log_stream",
            logGroupName=self._log_group_name,
            logStreamName=self._log_stream_name,
        )
        await self._refresh_sequence_token()
        self._initialized = True

    async def _create(self, operation: str, **kwargs: Any) -> None:
        try:
            await self._call(operation, **kwargs)
        except Exception as exc:
            if _error_code(exc) != _ALREADY_EXISTS:
                logger.warning("CloudWatch %s failed: %s", operation, exc)

    async def _refresh_sequence_token(self) -> None:
        try:
            result = await self._call(
                "describe_log_streams",
                logGroupName=self._log_group_name,
                logStreamNamePrefix=self._log_stream_name,
            )
        except Exception as exc:
            logger.warning("CloudWatch describe_log_streams failed: %s", exc)
            return
        for stream in result.get("logStreams", []):
            if stream.get("logStreamName") == self._log_stream_name:
                self._sequence_token = stream.get("uploadSequenceToken")
                break

    async def _put_events(self, events: List[Dict[str, Any]]) -> None:
        kwargs: Dict[str, Any] = {
            "logGroupName": self._log_group_name,
            "logStreamName": self._log_stream_name,
            "logEvents": events,
        }
        if self._sequence_token:
            kwargs["sequenceToken"] = self._sequence_token
        try:
            result = await self._call("put_log_events", **kwargs)
        except Exception as exc:
            if _error_code(exc) in _TOKEN_ERRORS:
                raise ProtocolStateError(str(exc), expected_token=_expected_token(exc)) from exc
            raise
        self._sequence_token = result.get("nextSequenceToken")

    async def _put_with_recovery(self, events: List[Dict[str, Any]]) -> None:
        try:
            await self._put_events(events)
        except ProtocolStateError as exc:
            logger.info("CloudWatch sequence token rejected; retrying with the expected token.")
            self._sequence_token = exc.expected_token
            try:
                await self._put_events(events)
            except Exception as retry_exc:
                logger.error(
                    "CloudWatch put_log_events retry failed; dropping %d entries: %s",
                    len(events),
                    retry_exc,
                )
