"""Audit subsystem: tool-invocation records routed to pluggable sinks.

Public API
----------
- :class:`AuditLogger`: shaping, redaction, routing, flush/close fan-out
- :class:`AuditSettings`: logger switches (optionally read from env vars)
- :class:`AuditLogEntry` / :class:`AuditResult`: the wire record
- :class:`AuditLevel`: ``none`` / ``basic`` / ``verbose``
"""

from mssql_mcp_audit.audit.logger import GLOBAL_ROUTE, AuditLogger, AuditSettings
from mssql_mcp_audit.audit.models import AuditLevel, AuditLogEntry, AuditResult

__all__ = [
    "GLOBAL_ROUTE",
    "AuditLevel",
    "AuditLogEntry",
    "AuditLogger",
    "AuditResult",
    "AuditSettings",
]
