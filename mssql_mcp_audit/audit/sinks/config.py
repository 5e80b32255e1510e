"""Audit sink configuration models.

One Pydantic model per sink kind, joined into the :data:`AuditSinkConfig`
discriminated union on ``type``. Keys are accepted in camelCase (as written
in config files) or snake_case.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from mssql_mcp_audit.constants import (
    APP_NAME,
    AZURE_DEFAULT_LOG_TYPE,
    DEFAULT_BATCH_SIZE,
    DEFAULT_FLUSH_INTERVAL_MS,
    SYSLOG_DEFAULT_FACILITY,
    SYSLOG_DEFAULT_PORT,
)
from mssql_mcp_audit.errors import ConfigurationError


class _SinkConfigBase(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class _BatchConfig(_SinkConfigBase):
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    flush_interval_ms: int = Field(default=DEFAULT_FLUSH_INTERVAL_MS, ge=1)


class FileSinkConfig(_SinkConfigBase):
    """Local JSON-Lines file."""

    type: Literal["file"]
    path: Optional[str] = Field(
        default=None, description="Target file; defaults to logs/audit.jsonl."
    )


class SyslogSinkConfig(_SinkConfigBase):
    """RFC 5424 syslog collector."""

    type: Literal["syslog"]
    host: str = Field(..., min_length=1)
    port: int = Field(default=SYSLOG_DEFAULT_PORT, ge=1, le=65535)
    protocol: Literal["udp", "tcp"] = "udp"
    facility: int = Field(default=SYSLOG_DEFAULT_FACILITY, ge=0, le=23)
    app_name: str = APP_NAME


class HttpSinkConfig(_BatchConfig):
    """Generic HTTP collector receiving JSON arrays."""

    type: Literal["http"]
    url: str = Field(..., min_length=1)
    headers: Dict[str, str] = Field(default_factory=dict)
    method: str = "POST"

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL '{v}' must start with http:// or https://")
        return v

    @field_validator("method")
    @classmethod
    def _normalize_method(cls, v: str) -> str:
        v = v.strip().upper()
        if not v.isalpha():
            raise ValueError(f"HTTP method '{v}' is not a valid verb")
        return v


class AzureMonitorSinkConfig(_BatchConfig):
    """Azure Log Analytics workspace."""

    type: Literal["azure-monitor"]
    workspace_id: str = Field(..., min_length=1)
    shared_key: str = Field(..., min_length=1, description="Base64 primary or secondary key.")
    log_type: str = AZURE_DEFAULT_LOG_TYPE


class CloudWatchSinkConfig(_BatchConfig):
    """AWS CloudWatch Logs stream."""

    type: Literal["cloudwatch"]
    log_group_name: str = Field(..., min_length=1)
    log_stream_name: Optional[str] = None
    region: Optional[str] = None


AuditSinkConfig = Annotated[
    Union[
        FileSinkConfig,
        SyslogSinkConfig,
        HttpSinkConfig,
        AzureMonitorSinkConfig,
        CloudWatchSinkConfig,
    ],
    Field(discriminator="type"),
]

_SINK_CONFIG_ADAPTER: TypeAdapter[Any] = TypeAdapter(AuditSinkConfig)


def parse_sink_config(raw: Mapping[str, Any]) -> AuditSinkConfig:
    """Validate a raw mapping into its sink config variant.

    Raises :class:`ConfigurationError` for unknown kinds or invalid fields.
    """
    try:
        return _SINK_CONFIG_ADAPTER.validate_python(dict(raw))
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'type'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(
            f"Invalid audit sink config (type={raw.get('type')!r}): {details}"
        ) from exc
