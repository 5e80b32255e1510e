"""Audit configuration loading and sink construction.

Loads a YAML configuration file, expands ``${ENV_VAR}`` placeholders,
validates the audit sections against :class:`AuditConfig`, and builds the
global / per-environment sink lists handed to
:meth:`AuditLogger.configure_sinks`.
"""

import logging
import os
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml
from pydantic import ValidationError

from mssql_mcp_audit.audit.logger import AuditLogger
from mssql_mcp_audit.audit.shaping import is_sensitive_key
from mssql_mcp_audit.audit.sinks.base import AuditSink
from mssql_mcp_audit.audit.sinks.config import (
    AuditSinkConfig,
    AzureMonitorSinkConfig,
    FileSinkConfig,
    HttpSinkConfig,
)
from mssql_mcp_audit.audit.sinks.factory import create_audit_sink
from mssql_mcp_audit.config.env import expand_env_vars
from mssql_mcp_audit.config.schema import AuditConfig
from mssql_mcp_audit.display.logging_config import secret_redaction_filter
from mssql_mcp_audit.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Recognised config file extensions.
_YAML_EXTS = frozenset({".yaml", ".yml"})

SinkFactory = Callable[..., AuditSink]


def _read_config_file(cfg_fpath: str) -> Dict[str, Any]:
    """Read and parse a YAML config file from *cfg_fpath*.

    Raises :class:`ConfigurationError` on I/O or parse errors.
    """
    ext = os.path.splitext(cfg_fpath)[1].lower()
    if ext not in _YAML_EXTS:
        raise ConfigurationError(
            f"Unsupported config file extension '{ext}'. "
            "Only YAML files (.yaml, .yml) are supported."
        )

    try:
        with open(cfg_fpath, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except Exception as exc:
        raise ConfigurationError(f"Error reading configuration file: {cfg_fpath}\n  {exc}") from exc

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise ConfigurationError(
            "Top-level configuration content must be a YAML mapping (dictionary)."
        )
    return raw_data


def _format_validation_errors(exc: ValidationError) -> str:
    """Format Pydantic validation errors into a readable multi-line string."""
    lines: List[str] = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        lines.append(f"  • {loc}: {err['msg']}")
    return "\n".join(lines)


# ── Public API ───────────────────────────────────────────────────────────


def parse_audit_config(raw_data: Mapping[str, Any]) -> AuditConfig:
    """Expand env vars in *raw_data* and validate it.

    Raises:
        ConfigurationError: On validation failures (all errors reported at once).
    """
    expanded = expand_env_vars(dict(raw_data))
    try:
        return AuditConfig.model_validate(expanded)
    except ValidationError as exc:
        error_summary = _format_validation_errors(exc)
        raise ConfigurationError(
            f"Audit configuration validation failed ({len(exc.errors())} error(s)):\n"
            f"{error_summary}"
        ) from exc


def load_audit_config(cfg_fpath: str) -> AuditConfig:
    """Load, expand and validate the audit sections of *cfg_fpath*."""
    logger.debug("Loading audit configuration file: %s", cfg_fpath)

    if not os.path.exists(cfg_fpath):
        raise ConfigurationError(f"Configuration file does not exist: {cfg_fpath}")

    config = parse_audit_config(_read_config_file(cfg_fpath))
    logger.info(
        "Audit configuration '%s' loaded: %d global sink(s), %d environment(s).",
        cfg_fpath,
        len(config.audit_sinks),
        len(config.environments),
    )
    return config


def _register_credentials(sink_config: AuditSinkConfig) -> None:
    """Keep credential values out of diagnostic output."""
    if isinstance(sink_config, AzureMonitorSinkConfig):
        secret_redaction_filter.register(sink_config.shared_key)
    elif isinstance(sink_config, HttpSinkConfig):
        for name, value in sink_config.headers.items():
            if is_sensitive_key(name):
                secret_redaction_filter.register(value)


def _build_sinks(
    sink_configs: Sequence[AuditSinkConfig],
    factory: SinkFactory,
    scope: str,
) -> List[AuditSink]:
    sinks: List[AuditSink] = []
    for sink_config in sink_configs:
        _register_credentials(sink_config)
        try:
            sinks.append(factory(sink_config))
        except ConfigurationError:
            raise
        except Exception:
            logger.exception("Failed to create audit sink '%s' for %s", sink_config.type, scope)
    return sinks


def build_sink_routes(
    config: AuditConfig,
    *,
    default_log_path: Optional[str] = None,
    factory: SinkFactory = create_audit_sink,
) -> Tuple[List[AuditSink], Dict[str, List[AuditSink]]]:
    """Construct ``(global_sinks, per_environment_sinks)`` from *config*.

    When no global sink could be built, a file sink at *default_log_path*
    (or ``logs/audit.jsonl``) is used so entries are never silently lost.
    Environments that end up without sinks are omitted and fall back to
    the global list.
    """
    global_sinks = _build_sinks(config.audit_sinks, factory, "global scope")
    if not global_sinks:
        global_sinks.append(factory(FileSinkConfig(type="file", path=default_log_path)))

    per_env: Dict[str, List[AuditSink]] = {}
    for env in config.environments:
        if not env.audit_sinks:
            continue
        env_sinks = _build_sinks(env.audit_sinks, factory, f"environment '{env.name}'")
        if env_sinks:
            per_env[env.name] = env_sinks

    return global_sinks, per_env


def configure_audit_logger(
    audit_logger: AuditLogger,
    config: AuditConfig,
    *,
    default_log_path: Optional[str] = None,
) -> None:
    """Build sinks for *config* and install them on *audit_logger*."""
    global_sinks, per_env = build_sink_routes(config, default_log_path=default_log_path)
    audit_logger.configure_sinks(global_sinks, per_env)
