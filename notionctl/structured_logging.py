"""
Structured logging (opt-in).

Provides a JSON formatter and a small helper to emit bounded metadata-only
structured events (retries, dropped webhook deliveries). Default output stays
plain text unless NOTIONCTL_LOG_FORMAT=json is set.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def is_structured_logging_enabled() -> bool:
    value = (os.environ.get("NOTIONCTL_LOG_FORMAT") or "").strip().lower()
    return value == "json"


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "notionctl_event", None)
        if event:
            payload["event"] = str(event)
        fields = getattr(record, "notionctl_fields", None)
        if isinstance(fields, dict) and fields:
            payload["fields"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, sort_keys=True)


def configure_structured_output(logger: logging.Logger) -> bool:
    """
    Swap handler formatters for JsonFormatter when opt-in is enabled.
    Returns True when the formatter was applied.
    """
    if not is_structured_logging_enabled():
        return False
    formatter = JsonFormatter()
    for handler in logger.handlers:
        handler.setFormatter(formatter)
    return True


def _sanitize_value(value: Any, *, max_len: int = 256) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        if len(value) > max_len:
            return value[:max_len] + "...[truncated]"
        return value
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(v, max_len=max_len) for v in list(value)[:20]]
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for idx, (k, v) in enumerate(value.items()):
            if idx >= 20:
                out["__truncated__"] = True
                break
            out[str(k)] = _sanitize_value(v, max_len=max_len)
        return out
    return str(value)[:max_len]


def emit_structured_log(
    logger: logging.Logger,
    *,
    level: int,
    event: str,
    message: Optional[str] = None,
    fields: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log `message` with an event name and bounded metadata attached.

    The fields only show up in output when JsonFormatter is installed; plain
    text handlers print the message alone.
    """
    safe_fields = _sanitize_value(fields or {})
    if not isinstance(safe_fields, dict):
        safe_fields = {"value": safe_fields}
    logger.log(
        level,
        message or event,
        extra={"notionctl_event": event, "notionctl_fields": safe_fields},
    )
