"""Audit delivery sinks.

Public API
----------
- :class:`AuditSink`: capability interface (``send`` / ``flush`` / ``close``)
- :func:`create_audit_sink`: config → sink factory
- :class:`FileSink`, :class:`SyslogSink`, :class:`HttpSink`,
  :class:`AzureMonitorSink`, :class:`CloudWatchSink`: destinations
"""

from mssql_mcp_audit.audit.sinks.azure_monitor import AzureMonitorSink
from mssql_mcp_audit.audit.sinks.base import AuditSink, BatchingSink
from mssql_mcp_audit.audit.sinks.cloudwatch import ClientState, CloudWatchSink
from mssql_mcp_audit.audit.sinks.config import (
    AuditSinkConfig,
    AzureMonitorSinkConfig,
    CloudWatchSinkConfig,
    FileSinkConfig,
    HttpSinkConfig,
    SyslogSinkConfig,
    parse_sink_config,
)
from mssql_mcp_audit.audit.sinks.factory import create_audit_sink
from mssql_mcp_audit.audit.sinks.file import FileSink
from mssql_mcp_audit.audit.sinks.http import HttpSink
from mssql_mcp_audit.audit.sinks.syslog import SyslogSink

__all__ = [
    "AuditSink",
    "AuditSinkConfig",
    "AzureMonitorSink",
    "AzureMonitorSinkConfig",
    "BatchingSink",
    "ClientState",
    "CloudWatchSink",
    "CloudWatchSinkConfig",
    "FileSink",
    "FileSinkConfig",
    "HttpSink",
    "HttpSinkConfig",
    "SyslogSink",
    "SyslogSinkConfig",
    "create_audit_sink",
    "parse_sink_config",
]
