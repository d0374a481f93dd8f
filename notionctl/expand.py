"""
First-level relation expansion.

Fetches the pages referenced by relation properties and attaches them to
`Page.expanded_relations`, keyed by property name. Each related page is fetched
once, with at most three requests in flight.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from .models import Page, PropertyReference

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3
RELATION_TYPE = "relation"


class PageFetcher(Protocol):
    async def retrieve_page(
        self, page_id: str, cancel: Optional[asyncio.Event] = None
    ) -> Page: ...


def _collect_relations(
    pages: Sequence[Page], refs: Sequence[PropertyReference]
) -> List[Tuple[int, str, str]]:
    """(page index, property name, related page id) for every relation value."""
    found = []
    for idx, page in enumerate(pages):
        for ref in refs:
            if ref.type != RELATION_TYPE:
                continue
            for related_id in page.relation_ids(ref.name):
                found.append((idx, ref.name, related_id))
    return found


async def _fetch_all(
    client: PageFetcher,
    ids: Sequence[str],
    concurrency: int,
    cancel: Optional[asyncio.Event],
) -> Dict[str, Page]:
    sem = asyncio.Semaphore(concurrency)

    async def fetch(page_id: str) -> Tuple[str, Page]:
        async with sem:
            return page_id, await client.retrieve_page(page_id, cancel=cancel)

    tasks = [asyncio.ensure_future(fetch(page_id)) for page_id in ids]
    try:
        results = await asyncio.gather(*tasks)
    except BaseException:
        # First failure wins; stop the remaining fetches.
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return dict(results)


async def expand_first_level(
    client: PageFetcher,
    pages: List[Page],
    refs: Sequence[PropertyReference],
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    cancel: Optional[asyncio.Event] = None,
) -> None:
    if not pages or not refs:
        return

    relations = _collect_relations(pages, refs)
    if not relations:
        return

    unique_ids = list(dict.fromkeys(related_id for _, _, related_id in relations))
    logger.debug(f"Expanding {len(unique_ids)} related pages")
    related = await _fetch_all(client, unique_ids, concurrency, cancel)

    for idx, name, related_id in relations:
        target = related.get(related_id)
        if target is None:
            continue
        bucket = pages[idx].expanded_relations.setdefault(name, [])
        if not any(p.id == target.id for p in bucket):
            bucket.append(target)
