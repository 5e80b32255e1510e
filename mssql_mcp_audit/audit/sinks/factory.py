"""Build audit sinks from configuration."""

from __future__ import annotations

from typing import Any, Mapping, Union

from mssql_mcp_audit.audit.sinks.azure_monitor import AzureMonitorSink
from mssql_mcp_audit.audit.sinks.base import AuditSink
from mssql_mcp_audit.audit.sinks.cloudwatch import CloudWatchSink
from mssql_mcp_audit.audit.sinks.config import (
    AuditSinkConfig,
    AzureMonitorSinkConfig,
    CloudWatchSinkConfig,
    FileSinkConfig,
    HttpSinkConfig,
    SyslogSinkConfig,
    parse_sink_config,
)
from mssql_mcp_audit.audit.sinks.file import FileSink
from mssql_mcp_audit.audit.sinks.http import HttpSink
from mssql_mcp_audit.audit.sinks.syslog import SyslogSink
from mssql_mcp_audit.errors import ConfigurationError


def create_audit_sink(config: Union[AuditSinkConfig, Mapping[str, Any]]) -> AuditSink:
    """Build an :class:`AuditSink` from a config model or raw mapping.

    Expected shapes::

        {"type": "file", "path": "logs/audit.jsonl"}

        {"type": "http", "url": "https://collector/audit", "batchSize": 20}

    Raises :class:`ConfigurationError` for unknown types or invalid fields.
    """
    if isinstance(config, Mapping):
        config = parse_sink_config(config)

    if isinstance(config, FileSinkConfig):
        return FileSink(config.path)

    if isinstance(config, SyslogSinkConfig):
        return SyslogSink(
            config.host,
            port=config.port,
            protocol=config.protocol,
            facility=config.facility,
            app_name=config.app_name,
        )

    if isinstance(config, HttpSinkConfig):
        return HttpSink(
            config.url,
            headers=config.headers,
            method=config.method,
            batch_size=config.batch_size,
            flush_interval_ms=config.flush_interval_ms,
        )

    if isinstance(config, AzureMonitorSinkConfig):
        return AzureMonitorSink(
            config.workspace_id,
            config.shared_key,
            log_type=config.log_type,
            batch_size=config.batch_size,
            flush_interval_ms=config.flush_interval_ms,
        )

    if isinstance(config, CloudWatchSinkConfig):
        return CloudWatchSink(
            config.log_group_name,
            log_stream_name=config.log_stream_name,
            region=config.region,
            batch_size=config.batch_size,
            flush_interval_ms=config.flush_interval_ms,
        )

    raise ConfigurationError(f"Unknown audit sink type: {getattr(config, 'type', config)!r}")
