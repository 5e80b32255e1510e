"""Logging configuration setup for audit diagnostics."""

import copy
import logging
import logging.config
import re
import sys
from typing import Optional, Set

from mssql_mcp_audit.constants import DEFAULT_LOG_LEVEL

# ── Secret redaction filter ──────────────────────────────────────────────

_REDACTED = "***REDACTED***"


class SecretRedactionFilter(logging.Filter):
    """Logging filter that replaces registered credential values with a placeholder.

    Sink credentials (shared keys, authorization headers) are registered when
    sinks are built so that transport errors echoing them never reach the
    diagnostic log.
    """

    def __init__(self) -> None:
        super().__init__()
        self._secrets: Set[str] = set()
        self._pattern: Optional["re.Pattern[str]"] = None

    def register(self, value: str) -> None:
        """Register a secret value for redaction."""
        if value and len(value) >= 4:  # skip trivially short values
            self._secrets.add(value)
            # Longest first so overlapping secrets are fully masked
            escaped = sorted((re.escape(s) for s in self._secrets), key=len, reverse=True)
            self._pattern = re.compile("|".join(escaped))

    def filter(self, record: logging.LogRecord) -> bool:
        if self._pattern is not None:
            if isinstance(record.msg, str):
                record.msg = self._pattern.sub(_REDACTED, record.msg)
            if record.args:
                if isinstance(record.args, dict):
                    record.args = {
                        k: self._pattern.sub(_REDACTED, v) if isinstance(v, str) else v
                        for k, v in record.args.items()
                    }
                elif isinstance(record.args, tuple):
                    record.args = tuple(
                        self._pattern.sub(_REDACTED, a) if isinstance(a, str) else a
                        for a in record.args
                    )
        return True


# Module-level singleton so sink builders can register values.
secret_redaction_filter = SecretRedactionFilter()

BASE_LOG_CFG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "diagnostic": {
            "format": ("%(asctime)s - %(name)25s:%(lineno)-4d - " "%(levelname)-7s - %(message)s"),
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "stderr_handler": {
            "class": "logging.StreamHandler",
            "level": "DEBUG",
            "formatter": "diagnostic",
            "stream": "ext://sys.stderr",
        },
    },
    "loggers": {
        "mssql_mcp_audit": {
            "handlers": ["stderr_handler"],
            "propagate": False,
            "level": DEFAULT_LOG_LEVEL,
        },
        "httpx": {
            "handlers": ["stderr_handler"],
            "propagate": False,
            "level": "WARNING",
        },
    },
    "root": {
        "handlers": ["stderr_handler"],
        "level": "WARNING",
    },
}


def setup_logging(log_lvl_str: str = DEFAULT_LOG_LEVEL, *, log_file: Optional[str] = None) -> str:
    """
    Set up diagnostic logging for the audit pipeline.

    Diagnostics go to stderr (stdout may carry the MCP protocol stream) and,
    optionally, to *log_file*.

    Args:
        log_lvl_str: The desired log level string (e.g., 'debug', 'info').
        log_file: Optional additional file destination.

    Returns:
        The validated log level name.
    """
    log_lvl_valid = log_lvl_str.upper()
    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if log_lvl_valid not in valid_levels:
        print(f"Warning: invalid log level '{log_lvl_str}'. Using 'INFO'.", file=sys.stderr)
        log_lvl_valid = "INFO"

    log_cfg: dict = copy.deepcopy(BASE_LOG_CFG)
    log_cfg["loggers"]["mssql_mcp_audit"]["level"] = log_lvl_valid
    if log_file:
        log_cfg["handlers"]["file_handler"] = {
            "class": "logging.FileHandler",
            "level": "DEBUG",
            "formatter": "diagnostic",
            "filename": log_file,
            "encoding": "utf-8",
        }
        for logger_cfg in log_cfg["loggers"].values():
            logger_cfg["handlers"].append("file_handler")
        log_cfg["root"]["handlers"].append("file_handler")
    log_cfg["loggers"]["httpx"]["level"] = "INFO" if log_lvl_valid == "DEBUG" else "WARNING"

    try:
        logging.config.dictConfig(log_cfg)
        for name in ("mssql_mcp_audit", "httpx", ""):
            for handler in logging.getLogger(name).handlers:
                if secret_redaction_filter not in handler.filters:
                    handler.addFilter(secret_redaction_filter)
    except Exception as e_log_cfg:
        print(f"Error applying logging configuration: {e_log_cfg}", file=sys.stderr)

    return log_lvl_valid
