"""
Tests for error classification, cancellation helpers and structured log output.
"""

import asyncio
import json
import logging
import os
import unittest
from unittest.mock import patch

from notionctl.cancellation import check_cancelled, wait_cancellable
from notionctl.errors import (
    ErrorKind,
    NotionCancelled,
    NotionError,
    classify_status,
    error_from_response,
    is_retryable_status,
)
from notionctl.structured_logging import (
    JsonFormatter,
    configure_structured_output,
    emit_structured_log,
)


class TestClassification(unittest.TestCase):
    def test_status_kinds(self):
        cases = {
            400: ErrorKind.VALIDATION,
            401: ErrorKind.AUTH,
            403: ErrorKind.AUTH,
            404: ErrorKind.NOT_FOUND,
            409: ErrorKind.VALIDATION,
            429: ErrorKind.RATE_LIMITED,
            500: ErrorKind.SERVER,
            503: ErrorKind.SERVER,
        }
        for status, kind in cases.items():
            with self.subTest(status=status):
                self.assertEqual(classify_status(status), kind)

    def test_retryable(self):
        self.assertTrue(is_retryable_status(429))
        self.assertTrue(is_retryable_status(502))
        self.assertFalse(is_retryable_status(404))
        self.assertTrue(NotionError(ErrorKind.NETWORK, "x").retryable)
        self.assertFalse(NotionError(ErrorKind.DECODE, "x").retryable)

    def test_notion_error_body(self):
        body = json.dumps(
            {"object": "error", "status": 400, "code": "validation_error", "message": "bad filter"}
        ).encode()
        err = error_from_response(400, body)
        self.assertEqual(err.kind, ErrorKind.VALIDATION)
        self.assertEqual(err.code, "validation_error")
        self.assertEqual(err.message, "bad filter")
        self.assertEqual(err.status, 400)

    def test_plain_body_falls_back_to_status_line(self):
        err = error_from_response(502, b"<html>bad gateway</html>", retry_after=2.0)
        self.assertEqual(err.kind, ErrorKind.SERVER)
        self.assertEqual(err.code, "502 Bad Gateway")
        self.assertEqual(err.message, "<html>bad gateway</html>")
        self.assertEqual(err.retry_after, 2.0)

    def test_with_context_keeps_kind(self):
        err = NotionError(ErrorKind.RATE_LIMITED, "slow down", status=429, code="rate_limited")
        same = err.with_context(data_source_id="ds-1")
        self.assertIs(same, err)
        self.assertEqual(err.kind, ErrorKind.RATE_LIMITED)
        self.assertIn("data_source_id=ds-1", str(err))
        self.assertEqual(err.to_dict()["context"], {"data_source_id": "ds-1"})

    def test_cancelled_carries_partial(self):
        err = NotionCancelled(partial=["a"])
        self.assertEqual(err.kind, ErrorKind.CANCELLED)
        self.assertEqual(err.partial, ["a"])
        self.assertIsInstance(err, NotionError)


class TestCancellation(unittest.IsolatedAsyncioTestCase):
    async def test_check_cancelled(self):
        stop = asyncio.Event()
        check_cancelled(stop)
        check_cancelled(None)
        stop.set()
        with self.assertRaises(NotionCancelled):
            check_cancelled(stop, "poll")

    async def test_wait_returns_result(self):
        async def value():
            return 7

        self.assertEqual(await wait_cancellable(value(), asyncio.Event()), 7)
        self.assertEqual(await wait_cancellable(value(), None), 7)

    async def test_stop_abandons_wait(self):
        stop = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, stop.set)
        with self.assertRaises(NotionCancelled):
            await wait_cancellable(asyncio.sleep(60), stop, "backoff")

    async def test_already_stopped(self):
        stop = asyncio.Event()
        stop.set()
        with self.assertRaises(NotionCancelled):
            await wait_cancellable(asyncio.sleep(60), stop)


class TestStructuredLogging(unittest.TestCase):
    def test_formatter_includes_event_and_fields(self):
        logger = logging.getLogger("notionctl.test.structured")
        records = []

        class Capture(logging.Handler):
            def emit(self, record):
                records.append(record)

        handler = Capture()
        logger.addHandler(handler)
        self.addCleanup(logger.removeHandler, handler)
        logger.setLevel(logging.INFO)

        emit_structured_log(
            logger,
            level=logging.WARNING,
            event="client.retry",
            message="Retrying",
            fields={"attempt": 2, "body": "x" * 400},
        )

        payload = json.loads(JsonFormatter().format(records[0]))
        self.assertEqual(payload["event"], "client.retry")
        self.assertEqual(payload["level"], "warning")
        self.assertEqual(payload["message"], "Retrying")
        self.assertEqual(payload["fields"]["attempt"], 2)
        self.assertTrue(payload["fields"]["body"].endswith("...[truncated]"))

    def test_configure_is_opt_in(self):
        logger = logging.Logger("notionctl.test.optin")
        handler = logging.StreamHandler()
        logger.addHandler(handler)

        with patch.dict(os.environ, {}, clear=True):
            self.assertFalse(configure_structured_output(logger))
        self.assertNotIsInstance(handler.formatter, JsonFormatter)

        with patch.dict(os.environ, {"NOTIONCTL_LOG_FORMAT": "JSON"}):
            self.assertTrue(configure_structured_output(logger))
        self.assertIsInstance(handler.formatter, JsonFormatter)


if __name__ == "__main__":
    unittest.main()
