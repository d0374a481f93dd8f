"""
Notion API Client.
Performs authenticated, rate-limited, retried calls against the Notion REST API.
"""

import asyncio
import json
import logging
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlencode, urljoin

import aiohttp

from .cancellation import check_cancelled, wait_cancellable
from .config import DEFAULT_BASE_URL, DEFAULT_NOTION_VERSION, NotionConfig
from .errors import (
    ErrorKind,
    NotionCancelled,
    NotionError,
    error_from_response,
    is_retryable_status,
)
from .models import (
    BlockChildrenResponse,
    DataSource,
    Page,
    PropertyItemResponse,
    QueryDataSourceRequest,
    QueryDataSourceResponse,
)
from .rate_limiter import RateLimiter, default_rate_limiter
from .retry import DEFAULT_RETRY_POLICY, RetryPolicy, calculate_backoff
from .retry_after import parse_retry_after
from .structured_logging import emit_structured_log

logger = logging.getLogger(__name__)

USER_AGENT = "notionctl/0.1"
DEFAULT_TIMEOUT_SEC = 30.0

Decoder = Callable[[Any], Any]


class NotionClient:
    def __init__(
        self,
        token: str,
        *,
        notion_version: str = DEFAULT_NOTION_VERSION,
        base_url: str = DEFAULT_BASE_URL,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.token = token
        self.notion_version = notion_version or DEFAULT_NOTION_VERSION
        self.base_url = base_url.rstrip("/") + "/"
        self.retry_policy = retry_policy
        self.rate_limiter = rate_limiter or default_rate_limiter()
        self.timeout_sec = timeout_sec
        self.session = session
        self._owns_session = False
        self._sleep = sleep
        self._rng = rng

    @classmethod
    def from_config(cls, config: NotionConfig, **kwargs) -> "NotionClient":
        policy = kwargs.pop(
            "retry_policy", RetryPolicy(max_attempts=config.max_retries + 1)
        )
        return cls(
            config.token,
            notion_version=config.notion_version,
            base_url=config.base_url,
            retry_policy=policy,
            timeout_sec=config.timeout_sec,
            **kwargs,
        )

    async def start(self):
        """Initialize shared session."""
        if not self.session:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_sec)
            )
            self._owns_session = True

    async def close(self):
        """Close shared session."""
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None
        self._owns_session = False

    async def __aenter__(self) -> "NotionClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": self.notion_version,
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }

    def resolve(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return urljoin(self.base_url, path.lstrip("/"))

    # --- Transport ---

    async def execute(
        self,
        method: str,
        path: str,
        body: Any = None,
        decode: Optional[Decoder] = None,
        *,
        policy: Optional[RetryPolicy] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Any:
        """
        Perform one logical request, retrying transient failures.

        Args:
            method: HTTP method
            path: Path relative to the API base URL, or an absolute URL
            body: JSON-serializable request body (serialized once, replayed on retries)
            decode: Optional callable applied to the decoded JSON payload
            policy: Per-call retry policy override
            cancel: Stop event; abandons rate-limit waits and backoff sleeps

        Returns:
            The decoded payload, or None for 204 / empty responses

        Raises:
            NotionError: terminal failure or retries exhausted
            NotionCancelled: the stop event fired
        """
        policy = policy or self.retry_policy
        url = self.resolve(path)

        payload: Optional[bytes] = None
        if body is not None:
            try:
                payload = json.dumps(body).encode("utf-8")
            except (TypeError, ValueError) as e:
                raise NotionError(
                    ErrorKind.VALIDATION, f"encode request body: {e}"
                ) from e

        if not self.session:
            await self.start()

        last_error: Optional[NotionError] = None
        for attempt in range(policy.max_attempts):
            check_cancelled(cancel, f"{method} {path}")
            await self.rate_limiter.acquire(cancel)

            try:
                result = await self._attempt(method, url, payload, decode, cancel)
            except NotionCancelled:
                raise
            except NotionError as e:
                last_error = e
                if not e.retryable:
                    raise
                if attempt + 1 >= policy.max_attempts:
                    logger.error(
                        f"Max attempts ({policy.max_attempts}) exhausted for {method} {path}: {e}"
                    )
                    raise

                delay = calculate_backoff(
                    attempt, policy, retry_after=e.retry_after, rng=self._rng
                )
                emit_structured_log(
                    logger,
                    level=logging.INFO,
                    event="notion.retry",
                    message=(
                        f"Retry {attempt + 1}/{policy.max_attempts - 1} after {delay:.2f}s "
                        f"({e.kind.value}): {method} {path}"
                    ),
                    fields={
                        "attempt": attempt + 1,
                        "delay": delay,
                        "kind": e.kind.value,
                        "status": e.status,
                    },
                )
                await wait_cancellable(self._sleep(delay), cancel, "retry backoff")
                continue
            return result

        raise last_error or NotionError(
            ErrorKind.SERVER,
            f"retries exhausted after {policy.max_attempts} attempts",
        )

    async def _attempt(
        self,
        method: str,
        url: str,
        payload: Optional[bytes],
        decode: Optional[Decoder],
        cancel: Optional[asyncio.Event],
    ) -> Any:
        try:
            status, headers, raw = await wait_cancellable(
                self._send(method, url, payload), cancel, f"{method} {url}"
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            check_cancelled(cancel, f"{method} {url}")
            raise NotionError(
                ErrorKind.NETWORK, f"do request: {type(e).__name__}: {e}"
            ) from e

        if 200 <= status < 300:
            return self._decode_success(status, raw, decode)

        retry_after = parse_retry_after(headers) if is_retryable_status(status) else None
        raise error_from_response(status, raw, retry_after=retry_after)

    async def _send(self, method: str, url: str, payload: Optional[bytes]):
        async with self.session.request(
            method, url, data=payload, headers=self.headers
        ) as resp:
            raw = await resp.read()
            return resp.status, dict(resp.headers), raw

    @staticmethod
    def _decode_success(status: int, raw: bytes, decode: Optional[Decoder]) -> Any:
        if status == 204 or not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise NotionError(
                ErrorKind.DECODE, f"decode response: {e}", status=status
            ) from e
        if decode is None:
            return data
        try:
            return decode(data)
        except (KeyError, TypeError, ValueError) as e:
            raise NotionError(
                ErrorKind.DECODE, f"decode response: {e}", status=status
            ) from e

    # --- Data sources ---

    async def list_data_sources(
        self, database_id: str, cancel: Optional[asyncio.Event] = None
    ) -> List[DataSource]:
        """List data sources under a database container."""
        _require_id(database_id, "database_id")
        data = await self.execute(
            "GET", f"databases/{database_id}/data_sources", cancel=cancel
        )
        if isinstance(data, dict) and "data_sources" in data and "results" not in data:
            # The database object lists its sources inline.
            items = data.get("data_sources") or []
        else:
            items = (data or {}).get("results") or []
        return [DataSource.from_dict(item) for item in items]

    async def get_data_source(
        self, data_source_id: str, cancel: Optional[asyncio.Event] = None
    ) -> DataSource:
        _require_id(data_source_id, "data_source_id")
        return await self.execute(
            "GET",
            f"data_sources/{data_source_id}",
            decode=DataSource.from_dict,
            cancel=cancel,
        )

    async def query_data_source(
        self,
        data_source_id: str,
        request: QueryDataSourceRequest,
        cancel: Optional[asyncio.Event] = None,
    ) -> QueryDataSourceResponse:
        """Execute one page of a data source query."""
        _require_id(data_source_id, "data_source_id")
        path = f"data_sources/{data_source_id}/query"
        if request.filter_properties:
            # Notion takes filter_properties as repeated query parameters.
            path += "?" + urlencode(
                [("filter_properties", p) for p in request.filter_properties]
            )
        return await self.execute(
            "POST",
            path,
            body=request.to_dict(),
            decode=QueryDataSourceResponse.from_dict,
            cancel=cancel,
        )

    # --- Pages ---

    async def retrieve_page(
        self, page_id: str, cancel: Optional[asyncio.Event] = None
    ) -> Page:
        _require_id(page_id, "page_id")
        return await self.execute(
            "GET", f"pages/{page_id}", decode=Page.from_dict, cancel=cancel
        )

    async def update_page(
        self,
        page_id: str,
        properties: Optional[Dict[str, Any]] = None,
        archived: Optional[bool] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Page:
        """Apply property changes and/or archive state to a page."""
        _require_id(page_id, "page_id")
        body: Dict[str, Any] = {}
        if properties:
            body["properties"] = properties
        if archived is not None:
            body["archived"] = archived
        return await self.execute(
            "PATCH", f"pages/{page_id}", body=body, decode=Page.from_dict, cancel=cancel
        )

    async def retrieve_page_property(
        self,
        page_id: str,
        property_id: str,
        start_cursor: str = "",
        cancel: Optional[asyncio.Event] = None,
    ) -> PropertyItemResponse:
        """Fetch a property item (large relations / rollups are paginated)."""
        if not page_id or not property_id:
            raise NotionError(ErrorKind.VALIDATION, "page_id and property_id are required")
        path = f"pages/{page_id}/properties/{property_id}"
        if start_cursor:
            path += "?" + urlencode({"start_cursor": start_cursor})
        return await self.execute(
            "GET", path, decode=PropertyItemResponse.from_dict, cancel=cancel
        )

    # --- Blocks ---

    async def append_block_children(
        self,
        block_id: str,
        blocks: List[Dict[str, Any]],
        cancel: Optional[asyncio.Event] = None,
    ) -> None:
        _require_id(block_id, "block_id")
        if not blocks:
            raise NotionError(ErrorKind.VALIDATION, "no blocks supplied")
        await self.execute(
            "PATCH",
            f"blocks/{block_id}/children",
            body={"children": blocks},
            cancel=cancel,
        )

    async def retrieve_block_children(
        self,
        block_id: str,
        start_cursor: str = "",
        page_size: int = 0,
        cancel: Optional[asyncio.Event] = None,
    ) -> BlockChildrenResponse:
        _require_id(block_id, "block_id")
        params = {}
        if start_cursor:
            params["start_cursor"] = start_cursor
        if page_size > 0:
            params["page_size"] = str(page_size)
        path = f"blocks/{block_id}/children"
        if params:
            path += "?" + urlencode(params)
        return await self.execute(
            "GET", path, decode=BlockChildrenResponse.from_dict, cancel=cancel
        )


def _require_id(value: str, name: str) -> None:
    if not value:
        raise NotionError(ErrorKind.VALIDATION, f"{name} cannot be empty")
