"""
Watch Reconciler.

Merges two change feeds for one data source into a single JSON-lines stream:
- push: webhook deliveries queued by WebhookReceiver, emitted as they arrive
- poll: periodic last-edited-time sweeps, each window adjacent to the previous

The poll windows are the authoritative record; deliveries are a latency
shortcut and may be dropped or repeated. Nothing is de-duplicated between the
two feeds.
"""

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, TextIO

from .changes import ChangeClient, ChangeWindow, format_timestamp, query_window
from .errors import ErrorKind, NotionCancelled, NotionError
from .models import Page
from .webhook import (
    DEFAULT_CALLBACK_PATH,
    DEFAULT_LISTEN,
    DEFAULT_MAX_BODY_BYTES,
    DEFAULT_QUEUE_SIZE,
    Delivery,
    WebhookReceiver,
    normalize_callback_path,
    parse_listen_addr,
)

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(minutes=10)
DEFAULT_POLL_INTERVAL = timedelta(minutes=2)
DEFAULT_PAGE_SIZE = 100

EventSink = Callable[[Dict[str, Any]], None]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def json_lines_sink(stream: Optional[TextIO] = None) -> EventSink:
    """Write each event as one JSON line, flushed immediately."""

    def _emit(event: Dict[str, Any]) -> None:
        out = stream or sys.stdout
        out.write(json.dumps(event, ensure_ascii=False) + "\n")
        out.flush()

    return _emit


@dataclass
class WatchOptions:
    data_source_id: str
    since: Optional[datetime] = None
    lookback: timedelta = DEFAULT_LOOKBACK
    poll_interval: timedelta = DEFAULT_POLL_INTERVAL
    listen: str = DEFAULT_LISTEN
    callback_path: str = DEFAULT_CALLBACK_PATH
    webhook_secret: Optional[str] = None
    disable_webhook: bool = False
    suppress_empty: bool = False
    queue_size: int = DEFAULT_QUEUE_SIZE
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    page_size: int = DEFAULT_PAGE_SIZE

    def validate(self) -> None:
        if not (self.data_source_id or "").strip():
            raise NotionError(ErrorKind.VALIDATION, "data source ID is required")
        if self.poll_interval <= timedelta(0):
            raise NotionError(ErrorKind.VALIDATION, "poll interval must be positive")
        if self.since is None and self.lookback <= timedelta(0):
            raise NotionError(
                ErrorKind.VALIDATION, "lookback must be positive when since is not set"
            )
        if self.queue_size <= 0:
            raise NotionError(ErrorKind.VALIDATION, "queue size must be positive")
        if not self.disable_webhook:
            try:
                parse_listen_addr(self.listen)
            except ValueError as e:
                raise NotionError(ErrorKind.VALIDATION, f"webhook server: {e}") from e
        self.data_source_id = self.data_source_id.strip()
        self.callback_path = normalize_callback_path(self.callback_path)


@dataclass
class WatchCursor:
    """Upper bound of the last completed sweep; the next window starts here."""

    last_poll_end: Optional[datetime] = None
    lower_exclusive: bool = False


@dataclass
class WatchStats:
    polls: int = 0
    webhooks: int = 0
    pages: int = 0


class WatchReconciler:
    def __init__(
        self,
        client: ChangeClient,
        options: WatchOptions,
        emit: Optional[EventSink] = None,
        *,
        clock: Clock = _utcnow,
        receiver: Optional[WebhookReceiver] = None,
    ):
        self.client = client
        self.options = options
        self.emit = emit or json_lines_sink()
        self.clock = clock
        self.cursor = WatchCursor()
        self.stats = WatchStats()
        self.queue: "asyncio.Queue[Delivery]" = asyncio.Queue(
            maxsize=options.queue_size
        )
        self.receiver = receiver

    def _build_receiver(self) -> WebhookReceiver:
        return WebhookReceiver(
            self.queue,
            listen=self.options.listen,
            callback_path=self.options.callback_path,
            secret=self.options.webhook_secret,
            max_body_bytes=self.options.max_body_bytes,
        )

    # --- Poll feed ---

    async def _poll_window(
        self,
        since: datetime,
        until: datetime,
        lower_inclusive: bool,
        cancel: Optional[asyncio.Event],
    ) -> List[Page]:
        pages = await query_window(
            self.client,
            self.options.data_source_id,
            since,
            until,
            lower_inclusive,
            page_size=self.options.page_size,
            cancel=cancel,
        )
        self.stats.polls += 1
        self.stats.pages += len(pages)
        if pages or not self.options.suppress_empty:
            self.emit(self._poll_event(ChangeWindow(since, until, lower_inclusive), pages))
        else:
            logger.debug(
                f"Suppressed empty poll {format_timestamp(since)} .. {format_timestamp(until)}"
            )
        return pages

    @staticmethod
    def _poll_event(window: ChangeWindow, pages: List[Page]) -> Dict[str, Any]:
        return {
            "kind": "poll",
            "window": window.to_dict(),
            "count": len(pages),
            "pages": [p.to_dict() for p in pages],
        }

    async def bootstrap(self, cancel: Optional[asyncio.Event] = None) -> List[Page]:
        """Sweep `[since or now - lookback, now]` and seed the cursor."""
        now = self.clock()
        since = self.options.since or (now - self.options.lookback)
        logger.info(
            f"Bootstrap sweep for {self.options.data_source_id} from {format_timestamp(since)}"
        )
        pages = await self._poll_window(since, now, True, cancel)
        self.cursor = WatchCursor(last_poll_end=now, lower_exclusive=True)
        return pages

    async def poll_next(self, cancel: Optional[asyncio.Event] = None) -> List[Page]:
        """Sweep `(last_poll_end, now]` and advance the cursor."""
        if self.cursor.last_poll_end is None:
            return await self.bootstrap(cancel)
        now = self.clock()
        pages = await self._poll_window(
            self.cursor.last_poll_end, now, not self.cursor.lower_exclusive, cancel
        )
        self.cursor = WatchCursor(last_poll_end=now, lower_exclusive=True)
        return pages

    # --- Push feed ---

    def emit_webhook(self, delivery: Delivery) -> None:
        self.stats.webhooks += 1
        self.emit(
            {
                "kind": "webhook",
                "event_type": delivery.event_type,
                "delivery_id": delivery.delivery_id,
                "received_at": format_timestamp(delivery.received_at),
                "raw": delivery.raw_value(),
            }
        )

    # --- Session ---

    async def run(self, stop: asyncio.Event) -> None:
        """
        Run one watch session until `stop` is set.

        Returns cleanly on stop, including when the stop interrupts a sweep.
        Poll errors and receiver failures end the session by raising.
        """
        self.options.validate()

        if not self.options.disable_webhook and self.receiver is None:
            self.receiver = self._build_receiver()
        if self.options.disable_webhook:
            self.receiver = None

        if self.receiver is not None:
            # Bind before the first sweep so address errors surface immediately.
            await self.receiver.start()

        try:
            await self.bootstrap(stop)
            await self._loop(stop)
        except NotionCancelled:
            if stop.is_set():
                logger.info("Watch stopped during a sweep")
                return
            raise
        finally:
            if self.receiver is not None:
                await self.receiver.stop()
            logger.info(
                f"Watch session ended: {self.stats.polls} polls, "
                f"{self.stats.webhooks} webhook deliveries, {self.stats.pages} pages"
            )

    async def _loop(self, stop: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        interval = self.options.poll_interval.total_seconds()
        next_tick = loop.time() + interval

        stop_waiter = asyncio.ensure_future(stop.wait())
        get_task: Optional[asyncio.Future] = None
        try:
            while True:
                if get_task is None:
                    get_task = asyncio.ensure_future(self.queue.get())
                waiters = {stop_waiter, get_task}
                failure = self.receiver.failure if self.receiver else None
                if failure is not None:
                    waiters.add(failure)

                timeout = max(0.0, next_tick - loop.time())
                done, _ = await asyncio.wait(
                    waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )

                if stop.is_set():
                    logger.info("Watch stop requested")
                    return

                if failure is not None and failure in done:
                    exc = failure.exception()
                    raise NotionError(
                        ErrorKind.NETWORK, f"webhook receiver failed: {exc}"
                    ) from exc

                if get_task in done:
                    delivery = get_task.result()
                    get_task = None
                    self.emit_webhook(delivery)
                    continue

                if loop.time() < next_tick:
                    continue

                await self.poll_next(stop)
                next_tick += interval
                if next_tick <= loop.time():
                    # The sweep overran the interval; skip the missed ticks.
                    next_tick = loop.time() + interval
        finally:
            stop_waiter.cancel()
            if get_task is not None:
                get_task.cancel()
