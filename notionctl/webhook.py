"""
Notion Webhook Receiver.
Receives webhook deliveries, verifies the optional shared-secret signature, and
hands them to the watch loop through a bounded queue.

Signature scheme:
- ``Notion-Signature: sha256=<hex>`` over ``timestamp || raw_body``
- ``Notion-Signature-Timestamp`` carries the timestamp that was signed

The handler never waits on the consumer: when the queue is full the newest
delivery is dropped and logged, and the sender still gets 200. Polling sweeps
are the authoritative backstop for anything dropped here.
"""

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Tuple

from aiohttp import web

from .errors import ErrorKind, NotionError
from .structured_logging import emit_structured_log

logger = logging.getLogger(__name__)

DEFAULT_LISTEN = ":8914"
DEFAULT_CALLBACK_PATH = "/webhook"
DEFAULT_QUEUE_SIZE = 16
DEFAULT_MAX_BODY_BYTES = 1 << 20  # 1 MiB
DEFAULT_SHUTDOWN_GRACE_SEC = 3.0

SIGNATURE_HEADER = "Notion-Signature"
TIMESTAMP_HEADER = "Notion-Signature-Timestamp"
DELIVERY_ID_HEADER = "Notion-Delivery-ID"
SIGNATURE_PREFIX = "sha256="


@dataclass
class Delivery:
    """One inbound webhook notification."""

    payload: bytes
    event_type: str = ""
    delivery_id: str = ""
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def raw_value(self) -> Any:
        """Parsed JSON payload, or the decoded text when it is not JSON."""
        try:
            return json.loads(self.payload)
        except ValueError:
            return self.payload.decode("utf-8", errors="replace")


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    digest = hmac.new(
        secret.encode("utf-8"), timestamp.encode("utf-8") + body, hashlib.sha256
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(
    secret: Optional[str], timestamp: str, body: bytes, signature: str
) -> bool:
    """
    Verify a Notion webhook signature.

    No secret configured → accept everything. With a secret, a missing header or
    mismatch is rejected. Comparison is constant-time.
    """
    if not secret:
        return True
    if not signature or not timestamp:
        return False

    sig = signature.strip()
    if sig.startswith(SIGNATURE_PREFIX):
        sig = sig[len(SIGNATURE_PREFIX) :]
    expected = compute_signature(secret, timestamp, body)[len(SIGNATURE_PREFIX) :]
    return hmac.compare_digest(
        expected.encode("utf-8"), sig.encode("utf-8", errors="replace")
    )


def extract_event_type(payload: bytes) -> str:
    """`event.type` when present, else top-level `type`, else empty."""
    try:
        data = json.loads(payload)
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    event = data.get("event")
    if isinstance(event, dict) and isinstance(event.get("type"), str) and event["type"]:
        return event["type"]
    value = data.get("type")
    return value if isinstance(value, str) else ""


def normalize_callback_path(path: str) -> str:
    path = (path or "").strip() or DEFAULT_CALLBACK_PATH
    if not path.startswith("/"):
        path = "/" + path
    return path


def parse_listen_addr(addr: str) -> Tuple[Optional[str], int]:
    """Split ``host:port``; an empty host binds every interface."""
    host, sep, port = (addr or DEFAULT_LISTEN).rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address {addr!r} (expected host:port)")
    host = host.strip("[]")
    return (host or None), int(port)


class WebhookReceiver:
    def __init__(
        self,
        queue: "asyncio.Queue[Delivery]",
        *,
        listen: str = DEFAULT_LISTEN,
        callback_path: str = DEFAULT_CALLBACK_PATH,
        secret: Optional[str] = None,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        shutdown_grace_sec: float = DEFAULT_SHUTDOWN_GRACE_SEC,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.queue = queue
        self.listen = listen
        self.callback_path = normalize_callback_path(callback_path)
        self.secret = secret or None
        self.max_body_bytes = max_body_bytes
        self.shutdown_grace_sec = shutdown_grace_sec
        self._clock = clock
        self.accepted = 0
        self.dropped = 0
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        # Resolved with an exception when the receiver can no longer serve.
        self.failure: Optional[asyncio.Future] = None

    def build_app(self) -> web.Application:
        app = web.Application(client_max_size=self.max_body_bytes)
        app.router.add_route("*", self.callback_path, self.handle_delivery)
        return app

    async def start(self):
        """
        Bind and start serving.

        A malformed listen address raises a validation NotionError; a failed
        bind raises a network NotionError chained to the OSError.
        """
        try:
            host, port = parse_listen_addr(self.listen)
        except ValueError as e:
            raise NotionError(ErrorKind.VALIDATION, f"webhook server: {e}") from e
        self.runner = web.AppRunner(
            self.build_app(), shutdown_timeout=self.shutdown_grace_sec
        )
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, host, port)
        try:
            await self.site.start()
        except OSError as e:
            await self._abort_start()
            raise NotionError(ErrorKind.NETWORK, f"webhook server: {e}") from e
        except Exception:
            await self._abort_start()
            raise
        self.failure = asyncio.get_running_loop().create_future()
        logger.info(
            f"Listening for Notion webhooks on http://{host or '0.0.0.0'}:{port}{self.callback_path}"
        )

    async def _abort_start(self):
        await self.runner.cleanup()
        self.runner = None
        self.site = None

    async def stop(self):
        """Stop accepting, give in-flight handlers the grace period, then close."""
        if self.runner:
            await self.runner.cleanup()
        self.runner = None
        self.site = None
        if self.failure is not None and not self.failure.done():
            self.failure.cancel()

    @property
    def addresses(self):
        """Bound socket addresses (useful when listening on port 0)."""
        return self.runner.addresses if self.runner else []

    def fail(self, exc: BaseException) -> None:
        """Report a fatal serving error to whoever watches `failure`."""
        logger.error(f"Webhook receiver failed: {exc}")
        if self.failure is not None and not self.failure.done():
            self.failure.set_exception(exc)

    async def handle_delivery(self, request: web.Request) -> web.StreamResponse:
        if request.method != "POST":
            return web.Response(
                status=405, text="method not allowed", headers={"Allow": "POST"}
            )

        if (
            request.content_length is not None
            and request.content_length > self.max_body_bytes
        ):
            return web.Response(status=413, text="payload too large")
        try:
            body = await request.read()
        except web.HTTPRequestEntityTooLarge:
            return web.Response(status=413, text="payload too large")

        if not verify_signature(
            self.secret,
            request.headers.get(TIMESTAMP_HEADER, ""),
            body,
            request.headers.get(SIGNATURE_HEADER, ""),
        ):
            logger.warning("Rejected webhook delivery: invalid signature")
            return web.Response(status=401, text="invalid signature")

        delivery = Delivery(
            payload=bytes(body),
            event_type=extract_event_type(body),
            delivery_id=request.headers.get(DELIVERY_ID_HEADER, ""),
            received_at=self._clock(),
        )
        try:
            self.offer(delivery)
        except Exception as e:
            self.fail(e)
            raise
        return web.json_response({"ok": True})

    def offer(self, delivery: Delivery) -> bool:
        """Queue without blocking; drop the delivery when the queue is full."""
        try:
            self.queue.put_nowait(delivery)
        except asyncio.QueueFull:
            self.dropped += 1
            emit_structured_log(
                logger,
                level=logging.WARNING,
                event="webhook.dropped",
                message="Dropping webhook delivery: queue full",
                fields={
                    "delivery_id": delivery.delivery_id,
                    "event_type": delivery.event_type,
                    "dropped_total": self.dropped,
                },
            )
            return False
        self.accepted += 1
        return True
