"""RFC 5424 syslog sink over UDP or TCP.

UDP sends one datagram per entry. TCP keeps a single connection managed by
a background task, frames messages with octet counting (RFC 6587) and
reconnects after a fixed delay whenever the connection drops. Syslog is
best-effort: messages produced while disconnected are dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import socket
from typing import Literal, Optional

from mssql_mcp_audit.audit.models import AuditLogEntry, utc_timestamp
from mssql_mcp_audit.audit.sinks.base import AuditSink, _running_loop
from mssql_mcp_audit.constants import (
    APP_NAME,
    SYSLOG_DEFAULT_FACILITY,
    SYSLOG_DEFAULT_PORT,
    SYSLOG_RECONNECT_DELAY,
)

logger = logging.getLogger(__name__)

SEVERITY_WARNING = 4
SEVERITY_INFORMATIONAL = 6


class SyslogSink(AuditSink):
    """Forward each entry as one structured syslog message.

    Parameters
    ----------
    host / port:
        Collector address.
    protocol:
        ``"udp"`` (default) or ``"tcp"``.
    facility:
        Syslog facility code (default 16, local0).
    app_name:
        RFC 5424 APP-NAME field.
    reconnect_delay:
        Seconds to wait before reopening a dropped TCP connection.
    """

    type = "syslog"

    def __init__(
        self,
        host: str,
        *,
        port: int = SYSLOG_DEFAULT_PORT,
        protocol: Literal["udp", "tcp"] = "udp",
        facility: int = SYSLOG_DEFAULT_FACILITY,
        app_name: str = APP_NAME,
        reconnect_delay: float = SYSLOG_RECONNECT_DELAY,
    ) -> None:
        if protocol not in ("udp", "tcp"):
            raise ValueError(f"Unsupported syslog protocol: {protocol!r}")
        self._host = host
        self._port = port
        self._protocol = protocol
        self._facility = facility
        self._app_name = app_name
        self._reconnect_delay = reconnect_delay
        self._hostname = socket.gethostname()
        self._closed = False

        self._udp_socket: Optional[socket.socket] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._conn_task: Optional[asyncio.Task[None]] = None

        if protocol == "udp":
            self._udp_socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self._udp_socket.setblocking(False)

    @property
    def connected(self) -> bool:
        """Whether a TCP connection is currently usable."""
        return self._writer is not None and not self._writer.is_closing()

    def format_message(self, entry: AuditLogEntry) -> str:
        """Render *entry* as an RFC 5424 message."""
        failed = entry.result is not None and entry.result.success is False
        severity = SEVERITY_WARNING if failed else SEVERITY_INFORMATIONAL
        pri = self._facility * 8 + severity
        timestamp = entry.timestamp or utc_timestamp()
        msg_id = entry.tool_name or "-"
        return (
            f"<{pri}>1 {timestamp} {self._hostname} {self._app_name} "
            f"{os.getpid()} {msg_id} - {entry.to_json()}"
        )

    def send(self, entry: AuditLogEntry) -> None:
        if self._closed:
            return
        try:
            message = self.format_message(entry)
        except Exception:
            logger.exception("Failed to format syslog message for '%s'", entry.tool_name)
            return

        if self._protocol == "udp":
            self._send_udp(message)
        else:
            self._send_tcp(message)

    async def close(self) -> None:
        self._closed = True

        if self._udp_socket is not None:
            self._udp_socket.close()
            self._udp_socket = None

        if self._conn_task is not None:
            self._conn_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._conn_task
            self._conn_task = None

        if self._writer is not None:
            self._writer.close()
            self._writer = None

    # ── UDP ─────────────────────────────────────────────────────────────

    def _send_udp(self, message: str) -> None:
        if self._udp_socket is None:
            return
        try:
            self._udp_socket.sendto(message.encode("utf-8"), (self._host, self._port))
        except OSError as exc:
            logger.warning("Syslog UDP send to %s:%d failed: %s", self._host, self._port, exc)

    # ── TCP ─────────────────────────────────────────────────────────────

    def _send_tcp(self, message: str) -> None:
        if not self.connected:
            self._ensure_connection()
            logger.debug("Syslog TCP not connected; dropping message.")
            return

        data = message.encode("utf-8")
        try:
            self._writer.write(f"{len(data)} ".encode("ascii") + data)  # type: ignore[union-attr]
        except Exception as exc:
            logger.warning("Syslog TCP write failed: %s", exc)

    def _ensure_connection(self) -> None:
        if self._conn_task is not None and not self._conn_task.done():
            return
        loop = _running_loop()
        if loop is None:
            logger.debug("No running event loop; syslog TCP connection deferred.")
            return
        self._conn_task = loop.create_task(
            self._maintain_connection(), name="audit-syslog-connection"
        )

    async def _maintain_connection(self) -> None:
        """Hold the TCP connection open, reconnecting until closed."""
        while not self._closed:
            try:
                reader, writer = await asyncio.open_connection(self._host, self._port)
            except OSError as exc:
                logger.warning(
                    "Syslog TCP connection to %s:%d failed: %s", self._host, self._port, exc
                )
            else:
                sock = writer.get_extra_info("socket")
                if sock is not None:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
                self._writer = writer
                logger.info("Syslog TCP connected to %s:%d", self._host, self._port)
                try:
                    # Collectors never reply; EOF means the peer closed.
                    while await reader.read(1024):
                        pass
                except OSError as exc:
                    logger.warning("Syslog TCP connection error: %s", exc)
                finally:
                    self._writer = None
                    writer.close()
                logger.info("Syslog TCP connection to %s:%d closed.", self._host, self._port)

            if self._closed:
                break
            await asyncio.sleep(self._reconnect_delay)
