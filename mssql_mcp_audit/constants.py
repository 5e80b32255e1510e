"""Shared constants for the MSSQL MCP audit pipeline."""

# Product tag used as syslog APP-NAME and CloudWatch stream prefix
APP_NAME = "mssql-mcp"

# File defaults
LOG_DIR = "logs"
DEFAULT_AUDIT_FILE = "audit.jsonl"
DEFAULT_LOG_LEVEL = "INFO"

# Batching defaults (HTTP, Azure Monitor, CloudWatch)
DEFAULT_BATCH_SIZE = 10
DEFAULT_FLUSH_INTERVAL_MS = 5000

# Syslog defaults
SYSLOG_DEFAULT_PORT = 514
SYSLOG_DEFAULT_FACILITY = 16  # local0
SYSLOG_RECONNECT_DELAY = 5.0  # seconds

# Azure Log Analytics (HTTP Data Collector API)
AZURE_DEFAULT_LOG_TYPE = "MSSQLMCPAudit"
AZURE_API_VERSION = "2016-04-01"
AZURE_RESOURCE = "/api/logs"

# Entry shaping limits
MAX_RESULT_ITEMS = 10
MAX_RESULT_CHARS = 10_000
RESULT_PREVIEW_CHARS = 1000
MAX_ARGUMENT_CHARS = 500

REDACTED = "[REDACTED]"
