"""
MSSQL MCP Audit - governance layer for the MSSQL MCP tool server.

Every tool invocation is recorded as an audit entry and delivered to one or
more sinks (JSON-Lines file, syslog, HTTP collector, Azure Log Analytics,
CloudWatch Logs) selected per deployment environment.
"""

__version__ = "0.1.0"
