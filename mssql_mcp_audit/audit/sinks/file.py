"""Append-only JSON-Lines file sink."""

from __future__ import annotations

import logging
import os
from typing import Optional

from mssql_mcp_audit.audit.models import AuditLogEntry
from mssql_mcp_audit.audit.sinks.base import AuditSink
from mssql_mcp_audit.constants import DEFAULT_AUDIT_FILE, LOG_DIR

logger = logging.getLogger(__name__)


def default_audit_path() -> str:
    return os.path.join(os.getcwd(), LOG_DIR, DEFAULT_AUDIT_FILE)


class FileSink(AuditSink):
    """Write one compact JSON object per line, synchronously per entry."""

    type = "file"

    def __init__(self, path: Optional[str] = None) -> None:
        self._path = os.path.abspath(path) if path else default_audit_path()
        os.makedirs(os.path.dirname(self._path), exist_ok=True)
        logger.debug("File audit sink writing to %s", self._path)

    @property
    def path(self) -> str:
        return self._path

    def send(self, entry: AuditLogEntry) -> None:
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(entry.to_json() + "\n")
