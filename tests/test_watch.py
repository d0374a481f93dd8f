"""
Tests for the watch reconciler: window adjacency, event shapes and session lifecycle.
"""

import asyncio
import unittest
from datetime import datetime, timedelta, timezone

from notionctl.cancellation import wait_cancellable
from notionctl.errors import ErrorKind, NotionError
from notionctl.models import Page, QueryDataSourceResponse
from notionctl.watch import WatchOptions, WatchReconciler
from notionctl.webhook import Delivery, WebhookReceiver

T = datetime(2024, 4, 10, 15, 30, 0, tzinfo=timezone.utc)


class StepClock:
    """Returns `start`, then advances by `step` on every call."""

    def __init__(self, start=T, step=timedelta(minutes=2)):
        self.now = start
        self.step = step
        self.calls = 0

    def __call__(self):
        value = self.now
        self.calls += 1
        if self.calls > 1:
            value = self.now = self.now + self.step
        return value


class RecordingClient:
    def __init__(self, results=None, fail_on=None, block_on=None):
        self.results = results or {}
        self.fail_on = fail_on
        self.block_on = block_on
        self.requests = []

    async def query_data_source(self, data_source_id, request, cancel=None):
        self.requests.append(request)
        n = len(self.requests)
        if n == self.fail_on:
            raise NotionError(ErrorKind.SERVER, "boom", status=500)
        if n == self.block_on:
            await wait_cancellable(asyncio.sleep(60), cancel, "query")
        return QueryDataSourceResponse([Page(id=i) for i in self.results.get(n, [])])

    def bounds(self, n):
        return self.requests[n].filter["last_edited_time"]


def _options(**kwargs):
    kwargs.setdefault("data_source_id", "ds-1")
    kwargs.setdefault("disable_webhook", True)
    return WatchOptions(**kwargs)


class TestWatchOptions(unittest.TestCase):
    def test_validation(self):
        for kwargs in (
            {"data_source_id": " "},
            {"poll_interval": timedelta(0)},
            {"lookback": timedelta(seconds=-1)},
        ):
            with self.assertRaises(NotionError) as cm:
                _options(**kwargs).validate()
            self.assertEqual(cm.exception.kind, ErrorKind.VALIDATION)

    def test_listen_address_checked_when_webhook_enabled(self):
        with self.assertRaises(NotionError) as cm:
            _options(disable_webhook=False, listen="localhost").validate()
        self.assertEqual(cm.exception.kind, ErrorKind.VALIDATION)
        self.assertIn("webhook server", str(cm.exception))
        _options(disable_webhook=True, listen="localhost").validate()

    def test_lookback_ignored_when_since_set(self):
        _options(lookback=timedelta(0), since=T).validate()

    def test_callback_path_normalized(self):
        opts = _options(callback_path="notion")
        opts.validate()
        self.assertEqual(opts.callback_path, "/notion")


class TestReconcilerSteps(unittest.IsolatedAsyncioTestCase):
    async def test_bootstrap_then_tick(self):
        events = []
        client = RecordingClient()
        reconciler = WatchReconciler(client, _options(), events.append, clock=StepClock())

        await reconciler.bootstrap()
        await reconciler.poll_next()

        self.assertEqual(
            client.bounds(0),
            {"on_or_after": "2024-04-10T15:20:00Z", "on_or_before": "2024-04-10T15:30:00Z"},
        )
        self.assertEqual(
            client.bounds(1),
            {"after": "2024-04-10T15:30:00Z", "on_or_before": "2024-04-10T15:32:00Z"},
        )
        self.assertEqual(
            events[1],
            {
                "kind": "poll",
                "window": {
                    "since": "2024-04-10T15:30:00Z",
                    "until": "2024-04-10T15:32:00Z",
                    "lower_inclusive": False,
                },
                "count": 0,
                "pages": [],
            },
        )
        self.assertTrue(events[0]["window"]["lower_inclusive"])

    async def test_windows_are_adjacent(self):
        events = []
        reconciler = WatchReconciler(RecordingClient(), _options(), events.append, clock=StepClock())

        await reconciler.bootstrap()
        for _ in range(4):
            await reconciler.poll_next()

        windows = [e["window"] for e in events]
        for prev, cur in zip(windows, windows[1:]):
            self.assertEqual(cur["since"], prev["until"])
            self.assertFalse(cur["lower_inclusive"])
        self.assertEqual(reconciler.cursor.last_poll_end, T + timedelta(minutes=8))

    async def test_explicit_since_overrides_lookback(self):
        client = RecordingClient()
        since = T - timedelta(days=1)
        reconciler = WatchReconciler(client, _options(since=since), lambda e: None, clock=StepClock())

        await reconciler.bootstrap()

        self.assertEqual(client.bounds(0)["on_or_after"], "2024-04-09T15:30:00Z")

    async def test_suppress_empty(self):
        events = []
        client = RecordingClient(results={2: ["p-9"]})
        reconciler = WatchReconciler(
            client, _options(suppress_empty=True), events.append, clock=StepClock()
        )

        await reconciler.bootstrap()
        await reconciler.poll_next()
        await reconciler.poll_next()

        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["count"], 1)
        self.assertEqual(events[0]["pages"][0]["id"], "p-9")
        # Suppressed polls still advance the cursor.
        self.assertEqual(events[0]["window"]["since"], "2024-04-10T15:30:00Z")
        self.assertEqual(reconciler.cursor.last_poll_end, T + timedelta(minutes=4))

    async def test_webhook_event_shape(self):
        events = []
        reconciler = WatchReconciler(RecordingClient(), _options(), events.append, clock=StepClock())

        reconciler.emit_webhook(
            Delivery(
                payload=b'{"type": "page.created", "entity": {"id": "p-1"}}',
                event_type="page.created",
                delivery_id="d-1",
                received_at=T,
            )
        )

        self.assertEqual(
            events,
            [
                {
                    "kind": "webhook",
                    "event_type": "page.created",
                    "delivery_id": "d-1",
                    "received_at": "2024-04-10T15:30:00Z",
                    "raw": {"type": "page.created", "entity": {"id": "p-1"}},
                }
            ],
        )


class TestReconcilerRun(unittest.IsolatedAsyncioTestCase):
    async def test_run_merges_feeds_until_stopped(self):
        events = []
        stop = asyncio.Event()
        reconciler = WatchReconciler(
            RecordingClient(),
            _options(poll_interval=timedelta(seconds=0.05)),
            events.append,
            clock=StepClock(),
        )
        reconciler.queue.put_nowait(Delivery(payload=b"{}", event_type="page.created"))

        loop = asyncio.get_running_loop()
        loop.call_later(0.3, stop.set)
        await asyncio.wait_for(reconciler.run(stop), timeout=5)

        kinds = [e["kind"] for e in events]
        self.assertEqual(kinds[0], "poll")
        self.assertIn("webhook", kinds)
        self.assertGreaterEqual(kinds.count("poll"), 2)
        polls = [e["window"] for e in events if e["kind"] == "poll"]
        for prev, cur in zip(polls, polls[1:]):
            self.assertEqual(cur["since"], prev["until"])

    async def test_poll_error_ends_session(self):
        stop = asyncio.Event()
        reconciler = WatchReconciler(
            RecordingClient(fail_on=2),
            _options(poll_interval=timedelta(seconds=0.01)),
            lambda e: None,
            clock=StepClock(),
        )

        with self.assertRaises(NotionError) as cm:
            await asyncio.wait_for(reconciler.run(stop), timeout=5)
        self.assertEqual(cm.exception.kind, ErrorKind.SERVER)
        self.assertEqual(cm.exception.context["data_source_id"], "ds-1")

    async def test_stop_during_sweep_returns_cleanly(self):
        stop = asyncio.Event()
        client = RecordingClient(block_on=2)
        reconciler = WatchReconciler(
            client,
            _options(poll_interval=timedelta(seconds=0.01)),
            lambda e: None,
            clock=StepClock(),
        )

        asyncio.get_running_loop().call_later(0.2, stop.set)
        await asyncio.wait_for(reconciler.run(stop), timeout=5)

        self.assertEqual(len(client.requests), 2)
        self.assertEqual(reconciler.stats.polls, 1)

    async def test_receiver_failure_ends_session(self):
        stop = asyncio.Event()
        options = _options(
            disable_webhook=False,
            listen="127.0.0.1:0",
            poll_interval=timedelta(minutes=5),
        )
        reconciler = WatchReconciler(RecordingClient(), options, lambda e: None, clock=StepClock())
        receiver = WebhookReceiver(reconciler.queue, listen=options.listen)
        reconciler.receiver = receiver

        asyncio.get_running_loop().call_later(
            0.1, lambda: receiver.fail(RuntimeError("listener died"))
        )
        with self.assertRaises(NotionError) as cm:
            await asyncio.wait_for(reconciler.run(stop), timeout=5)

        self.assertEqual(cm.exception.kind, ErrorKind.NETWORK)
        self.assertIn("listener died", str(cm.exception))
        self.assertIsNone(receiver.runner)


if __name__ == "__main__":
    unittest.main()
