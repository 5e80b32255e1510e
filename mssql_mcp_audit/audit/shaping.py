"""Entry shaping: argument redaction and result-data bounding."""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

from mssql_mcp_audit.audit.models import AuditResult
from mssql_mcp_audit.constants import (
    MAX_ARGUMENT_CHARS,
    MAX_RESULT_CHARS,
    MAX_RESULT_ITEMS,
    REDACTED,
    RESULT_PREVIEW_CHARS,
)

SENSITIVE_KEY_PARTS = (
    "password",
    "secret",
    "token",
    "key",
    "authorization",
    "auth",
    "credential",
)

# Live handles passed alongside tool arguments; never audit data.
STRIPPED_KEYS = frozenset({"pool", "environmentPolicy"})


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def _compact_json(value: Any) -> str:
    """Serialize *value* the way entries go on the wire: compact, UTF-8."""
    return json.dumps(value, default=str, ensure_ascii=False, separators=(",", ":"))


def _jsonable(value: Any) -> Any:
    """Normalize *value* to JSON-native types (unknown objects become strings)."""
    return json.loads(_compact_json(value))


def redact_arguments(arguments: Mapping[str, Any], *, redact: bool = True) -> Dict[str, Any]:
    """Return a sanitized copy of *arguments*.

    ``pool`` and ``environmentPolicy`` are always removed. With *redact*,
    sensitive keys are masked and long strings truncated.
    """
    cleaned: Dict[str, Any] = {}
    for key, value in arguments.items():
        if key in STRIPPED_KEYS:
            continue
        if redact and is_sensitive_key(key):
            cleaned[key] = REDACTED
        elif redact and isinstance(value, str) and len(value) > MAX_ARGUMENT_CHARS:
            cleaned[key] = value[:MAX_ARGUMENT_CHARS] + "... [TRUNCATED]"
        else:
            cleaned[key] = _jsonable(value)
    return cleaned


def truncate_result_data(data: Any) -> Any:
    """Bound verbose result data so a single entry cannot grow unbounded."""
    if data is None:
        return None

    if isinstance(data, (list, tuple)):
        if len(data) > MAX_RESULT_ITEMS:
            return {
                "truncated": True,
                "totalCount": len(data),
                "items": _jsonable(list(data[:MAX_RESULT_ITEMS])),
            }

    serialized = _compact_json(data)
    if len(serialized) > MAX_RESULT_CHARS:
        return {
            "truncated": True,
            "originalSize": len(serialized),
            "preview": serialized[:RESULT_PREVIEW_CHARS] + "...",
        }
    return json.loads(serialized)


def _field(source: Any, *names: str) -> Any:
    """First non-None attribute/key of *source* among *names*."""
    if source is None:
        return None
    for name in names:
        if isinstance(source, Mapping):
            value = source.get(name)
        else:
            value = getattr(source, name, None)
        if value is not None:
            return value
    return None


def _as_count(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (list, tuple)):
        # Multi-statement batches report one count per statement
        return sum(int(v) for v in value if isinstance(v, (int, float)))
    if isinstance(value, (int, float)):
        return int(value)
    return None


def build_result(result: Any, *, include_data: bool) -> AuditResult:
    """Project a tool result (mapping or object) onto :class:`AuditResult`."""
    success = _field(result, "success")
    record_count = _field(result, "recordCount", "record_count", "rowsAffected", "rows_affected")
    error = _field(result, "error")
    data: Optional[Any] = None
    if include_data:
        data = truncate_result_data(_field(result, "data"))
    return AuditResult(
        success=bool(success) if success is not None else False,
        record_count=_as_count(record_count),
        error=str(error) if error is not None else None,
        data=data,
    )
