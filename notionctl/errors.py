"""
Notion Error Types.

Structured exceptions for Notion API failures, plus the status classification
used by the client to decide between retrying and surfacing an error.
"""

from __future__ import annotations

import json
from enum import Enum
from http import HTTPStatus
from typing import Any, Dict, Optional, Tuple


class ErrorKind(str, Enum):
    """Classification of failures for retry and exit-code decisions."""

    VALIDATION = "validation"  # Bad caller input, never retried
    AUTH = "auth"  # 401/403
    NOT_FOUND = "not_found"  # 404
    RATE_LIMITED = "rate_limited"  # 429, respect Retry-After
    SERVER = "server"  # 5xx
    NETWORK = "network"  # Connection refused, reset, timeout
    DECODE = "decode"  # Remote answered but payload had the wrong shape
    CANCELLED = "cancelled"  # User-initiated stop


RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.SERVER, ErrorKind.NETWORK})


class NotionError(Exception):
    """
    Structured Notion failure.

    Attributes:
        kind: ErrorKind classification
        status: Remote HTTP status (0 when no response was received)
        code: Remote error code, or the HTTP status line when the body
            was not a Notion error object
        message: Human-readable message
        retry_after: Server-provided retry delay in seconds, if any
        context: Extra context added by higher layers (window bounds, ids)
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status: int = 0,
        code: str = "",
        retry_after: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        self.message = message
        self.status = status
        self.code = code
        self.retry_after = retry_after
        self.context: Dict[str, Any] = dict(context or {})
        super().__init__(self._format())

    def _format(self) -> str:
        text = f"notion: {self.message}"
        if self.code or self.status:
            text += f" (code={self.code} status={self.status})"
        if self.context:
            details = " ".join(f"{k}={v}" for k, v in self.context.items())
            text += f" [{details}]"
        return text

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def with_context(self, **context: Any) -> "NotionError":
        """Attach context in place and return self so callers can `raise err.with_context(...)`."""
        self.context.update(context)
        self.args = (self._format(),)
        return self

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "status": self.status,
            "code": self.code,
            "message": self.message,
        }
        if self.context:
            data["context"] = {k: str(v) for k, v in self.context.items()}
        return data


class NotionCancelled(NotionError):
    """
    Raised when the caller's stop event fires during a suspending operation.

    `partial` carries whatever was accumulated before the stop (for example the
    pages drained so far by a windowed query).
    """

    def __init__(self, message: str = "operation cancelled", partial: Any = None):
        super().__init__(ErrorKind.CANCELLED, message)
        self.partial = partial


def classify_status(status: int) -> ErrorKind:
    """Map an HTTP status code to an ErrorKind."""
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status >= 500:
        return ErrorKind.SERVER
    return ErrorKind.VALIDATION


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def status_line(status: int) -> str:
    """Return `"503 Service Unavailable"` style text for a status code."""
    try:
        return f"{status} {HTTPStatus(status).phrase}"
    except ValueError:
        return str(status)


def _decode_error_body(body: bytes) -> Tuple[Optional[Dict[str, Any]], str]:
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text) if text.strip() else None
    except json.JSONDecodeError:
        return None, text
    if not isinstance(data, dict) or not isinstance(data.get("message"), str):
        return None, text
    return data, text


def error_from_response(
    status: int, body: bytes, retry_after: Optional[float] = None
) -> NotionError:
    """
    Build a NotionError from a non-2xx response.

    A Notion error body looks like `{"object": "error", "status": 400,
    "code": "validation_error", "message": "..."}`. Anything else falls back to
    the status line as the code and the raw body as the message.
    """
    data, text = _decode_error_body(body)
    if data is None:
        return NotionError(
            classify_status(status),
            text.strip() or status_line(status),
            status=status,
            code=status_line(status),
            retry_after=retry_after,
        )

    remote_status = data.get("status")
    if not isinstance(remote_status, int) or remote_status == 0:
        remote_status = status
    return NotionError(
        classify_status(status),
        data["message"],
        status=remote_status,
        code=str(data.get("code") or status_line(status)),
        retry_after=retry_after,
    )
