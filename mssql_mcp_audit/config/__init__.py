"""Audit configuration: YAML loading, validation and sink construction."""

from mssql_mcp_audit.config.loader import (
    build_sink_routes,
    configure_audit_logger,
    load_audit_config,
    parse_audit_config,
)
from mssql_mcp_audit.config.schema import AuditConfig, EnvironmentAuditConfig

__all__ = [
    "AuditConfig",
    "EnvironmentAuditConfig",
    "build_sink_routes",
    "configure_audit_logger",
    "load_audit_config",
    "parse_audit_config",
]
