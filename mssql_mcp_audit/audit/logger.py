"""Audit logger: ingestion point for tool-invocation records.

Shapes each invocation according to its audit level, redacts sensitive
arguments, and routes the entry to the sinks configured for its
environment. Audit failures are reported through the ``logging``
infrastructure only; they never reach the tool caller.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import os
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from mssql_mcp_audit.audit.models import AuditLevel, AuditLogEntry
from mssql_mcp_audit.audit.shaping import build_result, redact_arguments
from mssql_mcp_audit.audit.sinks.base import AuditSink
from mssql_mcp_audit.audit.sinks.file import FileSink
from mssql_mcp_audit.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Routing-table key for sinks used when an environment has none of its own.
GLOBAL_ROUTE = "*"


class AuditSettings(BaseModel):
    """Logger-wide switches.

    ``log_path`` is only used in legacy mode, i.e. when
    :meth:`AuditLogger.configure_sinks` is never called.
    """

    enabled: bool = True
    log_path: Optional[str] = None
    redact_sensitive: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AuditSettings":
        """Read ``AUDIT_LOGGING``, ``AUDIT_LOG_PATH`` and ``AUDIT_REDACT_SENSITIVE``."""
        env = os.environ if environ is None else environ
        return cls(
            enabled=env.get("AUDIT_LOGGING") != "false",
            log_path=env.get("AUDIT_LOG_PATH") or None,
            redact_sensitive=env.get("AUDIT_REDACT_SENSITIVE") != "false",
        )


class AuditLogger:
    """Build, redact and dispatch audit entries.

    Parameters
    ----------
    settings:
        Logger switches; defaults to :class:`AuditSettings` defaults.
    """

    def __init__(self, settings: Optional[AuditSettings] = None) -> None:
        self._settings = settings or AuditSettings()
        self._routes: Optional[Dict[str, Tuple[AuditSink, ...]]] = None
        self._legacy_sink: Optional[FileSink] = None
        self._pending: set[asyncio.Future[Any]] = set()
        self._closed = False

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    @property
    def configured(self) -> bool:
        return self._routes is not None

    # ── Configuration ───────────────────────────────────────────────────

    def configure_sinks(
        self,
        global_sinks: Sequence[AuditSink],
        per_environment_sinks: Optional[Mapping[str, Sequence[AuditSink]]] = None,
    ) -> None:
        """Install the routing table. May only be called once.

        Parameters
        ----------
        global_sinks:
            Sinks used when an entry's environment has no sinks of its own.
        per_environment_sinks:
            Environment name → sinks for entries from that environment.
        """
        if self._routes is not None:
            raise ConfigurationError("Audit sinks are already configured.")
        per_env = dict(per_environment_sinks or {})
        routes: Dict[str, Tuple[AuditSink, ...]] = {GLOBAL_ROUTE: tuple(global_sinks)}
        for env_name, sinks in per_env.items():
            routes[env_name] = tuple(sinks)
        self._routes = routes
        logger.info(
            "Configured audit sinks: %d global, %d environment-specific",
            len(global_sinks),
            len(per_env),
        )

    def sinks_for(self, environment: Optional[str]) -> Tuple[AuditSink, ...]:
        """Sinks that receive entries from *environment*."""
        if self._routes is None:
            return ()
        if environment is not None:
            sinks = self._routes.get(environment)
            if sinks:
                return sinks
        return self._routes.get(GLOBAL_ROUTE, ())

    # ── Ingestion ───────────────────────────────────────────────────────

    def log_tool_invocation(
        self,
        tool_name: str,
        arguments: Optional[Mapping[str, Any]],
        result: Any,
        duration_ms: Optional[float],
        *,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        environment: Optional[str] = None,
        audit_level: Union[AuditLevel, str, None] = AuditLevel.BASIC,
    ) -> None:
        """Record one completed (or failed) tool run at *audit_level*."""
        try:
            level = AuditLevel(audit_level) if audit_level is not None else AuditLevel.BASIC
        except ValueError:
            logger.warning("Unknown audit level %r; using 'basic'.", audit_level)
            level = AuditLevel.BASIC

        if level is AuditLevel.NONE:
            return

        verbose = level is AuditLevel.VERBOSE
        try:
            entry = AuditLogEntry(
                tool_name=tool_name,
                environment=environment,
                arguments=dict(arguments or {}) if verbose else None,
                result=build_result(result, include_data=verbose),
                duration_ms=round(duration_ms) if duration_ms is not None else None,
                session_id=session_id,
                user_id=user_id,
            )
        except Exception:
            logger.exception("Failed to build audit entry for '%s'", tool_name)
            return

        self.log(entry)

    def log(self, entry: AuditLogEntry) -> None:
        """Redact *entry* and hand it to every sink routed for its environment."""
        if not self._settings.enabled:
            return

        try:
            if entry.arguments is not None:
                redacted = redact_arguments(
                    entry.arguments, redact=self._settings.redact_sensitive
                )
                entry = entry.model_copy(update={"arguments": redacted})
        except Exception:
            logger.exception("Failed to redact audit entry for '%s'", entry.tool_name)
            return

        if self._routes is None:
            self._write_legacy(entry)
            return

        for sink in self.sinks_for(entry.environment):
            self._dispatch(sink, entry)

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def flush(self) -> None:
        """Flush every distinct sink once."""
        await self._for_each_sink("flush")

    async def close(self) -> None:
        """Close every distinct sink once. Later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        await self._for_each_sink("close")

    # ── Internals ───────────────────────────────────────────────────────

    def _dispatch(self, sink: AuditSink, entry: AuditLogEntry) -> None:
        try:
            outcome = sink.send(entry)
        except Exception:
            logger.exception("Audit sink '%s' failed", sink.type)
            return
        if inspect.isawaitable(outcome):
            self._track(sink, outcome)

    def _track(self, sink: AuditSink, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.error(
                "Audit sink '%s' returned an awaitable outside an event loop; entry dropped.",
                sink.type,
            )
            return
        future = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(future)
        future.add_done_callback(functools.partial(self._on_send_done, sink))

    def _on_send_done(self, sink: AuditSink, future: asyncio.Future[Any]) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Audit sink '%s' failed: %s", sink.type, exc, exc_info=exc)

    def _write_legacy(self, entry: AuditLogEntry) -> None:
        try:
            if self._legacy_sink is None:
                self._legacy_sink = FileSink(self._settings.log_path)
            self._legacy_sink.send(entry)
        except Exception:
            logger.exception("Failed to write audit log")

    def _distinct_sinks(self) -> List[AuditSink]:
        seen: set[int] = set()
        distinct: List[AuditSink] = []
        for sinks in (self._routes or {}).values():
            for sink in sinks:
                if id(sink) not in seen:
                    seen.add(id(sink))
                    distinct.append(sink)
        return distinct

    async def _for_each_sink(self, operation: str) -> None:
        if self._routes is None:
            return
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        sinks = self._distinct_sinks()
        results = await asyncio.gather(
            *(self._invoke(sink, operation) for sink in sinks),
            return_exceptions=True,
        )
        for sink, outcome in zip(sinks, results):
            if isinstance(outcome, Exception):
                logger.error("Audit sink '%s' %s failed: %s", sink.type, operation, outcome)

    @staticmethod
    async def _invoke(sink: AuditSink, operation: str) -> None:
        method = getattr(sink, operation, None)
        if method is None:
            return
        outcome = method()
        if inspect.isawaitable(outcome):
            await outcome
