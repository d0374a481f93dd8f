"""
Retry-After Parsing Utility.

Normalizes the `Retry-After` hint on 429/503 responses to seconds.
Supports:
- Retry-After: 120 (seconds)
- Retry-After: Wed, 21 Oct 2025 07:28:00 GMT (HTTP-date)

Server-provided delays are honored exactly; no jitter and no clamping is
applied beyond discarding values that are already in the past.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Mapping, Optional

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_retry_after(
    headers: Mapping[str, str],
    now: Callable[[], datetime] = _utcnow,
) -> Optional[float]:
    """
    Parse Retry-After from HTTP headers.

    Args:
        headers: HTTP response headers (case-insensitive lookup is applied)
        now: Clock used to turn an HTTP-date into a delay

    Returns:
        Delay in seconds when the header is present and positive, else None
    """
    value = None
    for key, raw in headers.items():
        if key.lower() == "retry-after":
            value = raw
            break
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        seconds = int(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        return float(seconds) if seconds > 0 else None

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid Retry-After header: {value}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    delta = (when - now()).total_seconds()
    return delta if delta > 0 else None
