"""
Change Query.

Builds a last-edited-time window filter against a data source and drains every
result page into one list. Results are sorted newest first; callers rely on
first-seen-is-newest.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from .cancellation import check_cancelled
from .errors import ErrorKind, NotionCancelled, NotionError
from .models import Page, QueryDataSourceRequest, QueryDataSourceResponse

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
TIMESTAMP_PROPERTY = "last_edited_time"


class ChangeClient(Protocol):
    async def query_data_source(
        self,
        data_source_id: str,
        request: QueryDataSourceRequest,
        cancel: Optional[asyncio.Event] = None,
    ) -> QueryDataSourceResponse: ...


def format_timestamp(value: datetime) -> str:
    """RFC 3339 in UTC with second precision, e.g. 2024-04-10T15:30:00Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime."""
    text = (text or "").strip()
    if not text:
        raise NotionError(ErrorKind.VALIDATION, "timestamp cannot be empty")
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise NotionError(
            ErrorKind.VALIDATION, f"invalid RFC 3339 timestamp {text!r}"
        ) from e
    if parsed.tzinfo is None:
        raise NotionError(
            ErrorKind.VALIDATION, f"timestamp {text!r} is missing a UTC offset"
        )
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class ChangeWindow:
    since: datetime
    until: datetime
    lower_inclusive: bool = True

    def clamped(self) -> "ChangeWindow":
        """Collapse to a single instant when `until` is not after `since`."""
        if self.until > self.since:
            return self
        return ChangeWindow(self.since, self.since, self.lower_inclusive)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "since": format_timestamp(self.since),
            "until": format_timestamp(self.until),
            "lower_inclusive": self.lower_inclusive,
        }


def build_changes_filter(window: ChangeWindow) -> Dict[str, Any]:
    lower_key = "on_or_after" if window.lower_inclusive else "after"
    return {
        "timestamp": TIMESTAMP_PROPERTY,
        TIMESTAMP_PROPERTY: {
            lower_key: format_timestamp(window.since),
            "on_or_before": format_timestamp(window.until),
        },
    }


def build_last_edited_sort() -> List[Dict[str, str]]:
    return [{"timestamp": TIMESTAMP_PROPERTY, "direction": "descending"}]


async def drain_query(
    client: ChangeClient,
    data_source_id: str,
    request: QueryDataSourceRequest,
    cancel: Optional[asyncio.Event] = None,
) -> QueryDataSourceResponse:
    """
    Follow `next_cursor` until Notion reports no more pages.

    The returned response holds every result in remote order. When the stop
    event fires between pages, NotionCancelled is raised with the pages
    accumulated so far in `partial`.
    """
    collected: List[Page] = []
    cursor = request.start_cursor
    last = QueryDataSourceResponse()

    while True:
        try:
            check_cancelled(cancel, "query drain")
        except NotionCancelled as e:
            e.partial = collected
            raise

        page_request = QueryDataSourceRequest(
            filter=request.filter,
            sorts=request.sorts,
            filter_properties=request.filter_properties,
            start_cursor=cursor,
            page_size=request.page_size,
        )
        try:
            last = await client.query_data_source(
                data_source_id, page_request, cancel=cancel
            )
        except NotionCancelled as e:
            e.partial = collected
            raise

        collected.extend(last.results)
        logger.debug(
            f"Fetched {len(last.results)} results from {data_source_id} "
            f"(has_more={last.has_more})"
        )
        if not last.has_more or not last.next_cursor:
            break
        cursor = last.next_cursor

    return QueryDataSourceResponse(
        results=collected, has_more=last.has_more, next_cursor=last.next_cursor
    )


async def query_window(
    client: ChangeClient,
    data_source_id: str,
    since: datetime,
    until: datetime,
    lower_inclusive: bool = True,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    cancel: Optional[asyncio.Event] = None,
) -> List[Page]:
    """
    Fetch every page edited inside the window, newest first.

    The window is `[since, until]` when `lower_inclusive`, else `(since, until]`.
    A window whose `until` is not after `since` collapses to `since`.
    """
    if not data_source_id:
        raise NotionError(ErrorKind.VALIDATION, "data source ID cannot be empty")

    window = ChangeWindow(since, until, lower_inclusive).clamped()
    request = QueryDataSourceRequest(
        filter=build_changes_filter(window),
        sorts=build_last_edited_sort(),
        page_size=page_size,
    )

    try:
        response = await drain_query(client, data_source_id, request, cancel=cancel)
    except NotionError as e:
        raise e.with_context(
            data_source_id=data_source_id,
            since=format_timestamp(window.since),
            until=format_timestamp(window.until),
        )
    return response.results
