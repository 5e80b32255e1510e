"""Audit entry models: one record per tool invocation.

Entries serialize with camelCase keys (``toolName``, ``durationMs``, …) and
omit unset fields, which is the shape every sink puts on the wire.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and ``Z``."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class AuditLevel(str, Enum):
    """How much of an invocation is recorded."""

    NONE = "none"
    BASIC = "basic"
    VERBOSE = "verbose"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class AuditResult(_WireModel):
    """Outcome of the invocation. ``data`` is only set at verbose level.

    ``success`` is left unset on pre-built entries that do not report it;
    entries built from tool results always carry it.
    """

    success: Optional[bool] = None
    record_count: Optional[int] = None
    error: Optional[str] = None
    data: Any = None


class AuditLogEntry(_WireModel):
    """A single audit record describing one tool invocation."""

    timestamp: str = Field(default_factory=utc_timestamp)
    tool_name: str
    environment: Optional[str] = None
    arguments: Optional[Dict[str, Any]] = None
    result: Optional[AuditResult] = None
    duration_ms: Optional[int] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """JSON-compatible dict with wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        """Compact JSON document with wire keys."""
        return self.model_dump_json(by_alias=True, exclude_none=True)
