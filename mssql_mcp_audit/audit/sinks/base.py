"""Sink contract shared by every audit destination.

* **AuditSink**: capability interface: ``send`` plus no-op ``flush``/``close``.
* **BatchingSink**: buffer, size threshold and interval timer used by the
  HTTP-style sinks; subclasses only implement ``_deliver``.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
from typing import List, Optional

from mssql_mcp_audit.audit.models import AuditLogEntry
from mssql_mcp_audit.constants import DEFAULT_BATCH_SIZE, DEFAULT_FLUSH_INTERVAL_MS

logger = logging.getLogger(__name__)


def encode_batch(batch: List[AuditLogEntry]) -> str:
    """Serialize *batch* as a compact JSON array in send order."""
    return json.dumps([entry.to_payload() for entry in batch], separators=(",", ":"))


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class AuditSink(abc.ABC):
    """Base class for audit delivery backends."""

    type: str = "abstract"

    @abc.abstractmethod
    def send(self, entry: AuditLogEntry) -> None:
        """Enqueue or immediately write *entry*. Must not block on I/O."""

    async def flush(self) -> None:
        """Hand every buffered entry to the transport."""

    async def close(self) -> None:
        """Stop background work, flush, and release transport resources."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(type={self.type!r})"


class BatchingSink(AuditSink):
    """Buffer entries and deliver them in batches.

    A flush happens when the buffer reaches *batch_size* and, independently,
    every *flush_interval_ms* while a timer task is running. The timer starts
    on the first :meth:`send` made inside a running event loop.
    """

    def __init__(
        self,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
    ) -> None:
        self._batch_size = max(1, batch_size)
        self._flush_interval = max(flush_interval_ms, 1) / 1000.0
        self._buffer: List[AuditLogEntry] = []
        self._timer: Optional[asyncio.Task[None]] = None
        self._background_tasks: set[asyncio.Task[None]] = set()
        self._stopped = asyncio.Event()
        self._closed = False

    @property
    def buffered(self) -> int:
        """Number of entries waiting for the next flush."""
        return len(self._buffer)

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, entry: AuditLogEntry) -> None:
        if self._closed or not self._accepting():
            return
        self._buffer.append(entry)
        self._ensure_timer()
        if len(self._buffer) >= self._batch_size:
            self._schedule_flush()

    async def flush(self) -> None:
        if not self._buffer:
            return
        # Detach before the first await; later sends land in a fresh buffer.
        batch = self._buffer
        self._buffer = []
        await self._deliver(batch)

    async def close(self) -> None:
        self._closed = True
        self._stopped.set()
        if self._timer is not None:
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        try:
            await self.flush()
        finally:
            await self._release()

    # ── Subclass hooks ──────────────────────────────────────────────────

    @abc.abstractmethod
    async def _deliver(self, batch: List[AuditLogEntry]) -> None:
        """Send *batch*. Failures are logged here, never raised."""

    def _accepting(self) -> bool:
        return True

    async def _release(self) -> None:
        """Release transport resources after the final flush."""

    # ── Scheduling ──────────────────────────────────────────────────────

    def _ensure_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            return
        loop = _running_loop()
        if loop is None:
            return
        self._timer = loop.create_task(self._run_timer(), name=f"audit-{self.type}-timer")

    async def _run_timer(self) -> None:
        while not self._stopped.is_set():
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._flush_interval)
                break  # stopped was set
            except asyncio.TimeoutError:
                pass  # interval elapsed
            await self._safe_flush()

    def _schedule_flush(self) -> None:
        loop = _running_loop()
        if loop is None:
            logger.debug(
                "No running event loop; %d '%s' audit entries stay buffered.",
                len(self._buffer),
                self.type,
            )
            return
        task = loop.create_task(self._safe_flush())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _safe_flush(self) -> None:
        try:
            await self.flush()
        except Exception:
            logger.exception("Audit sink '%s' flush failed", self.type)
