"""
Tests for first-level relation expansion.
"""

import asyncio
import unittest

from notionctl.errors import ErrorKind, NotionError
from notionctl.expand import expand_first_level
from notionctl.models import Page, PropertyReference

PROJECT = PropertyReference(id="rel1", name="Project", type="relation")


def _with_relations(page_id, *related):
    return Page(
        id=page_id,
        properties={"Project": {"id": "rel1", "type": "relation", "relation": [{"id": r} for r in related]}},
    )


class FakeFetcher:
    def __init__(self, fail=None):
        self.calls = []
        self.in_flight = 0
        self.peak = 0
        self.fail = fail

    async def retrieve_page(self, page_id, cancel=None):
        self.calls.append(page_id)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if page_id == self.fail:
                raise NotionError(ErrorKind.NOT_FOUND, f"{page_id} missing", status=404)
            return Page(id=page_id)
        finally:
            self.in_flight -= 1


class TestExpandFirstLevel(unittest.IsolatedAsyncioTestCase):
    async def test_attaches_related_pages_once(self):
        pages = [_with_relations("a", "r1", "r2"), _with_relations("b", "r2", "r2")]
        fetcher = FakeFetcher()

        await expand_first_level(fetcher, pages, [PROJECT])

        self.assertEqual(sorted(fetcher.calls), ["r1", "r2"])
        self.assertEqual([p.id for p in pages[0].expanded_relations["Project"]], ["r1", "r2"])
        self.assertEqual([p.id for p in pages[1].expanded_relations["Project"]], ["r2"])

    async def test_concurrency_bounded(self):
        related = [f"r{i}" for i in range(10)]
        fetcher = FakeFetcher()

        await expand_first_level(fetcher, [_with_relations("a", *related)], [PROJECT])

        self.assertEqual(len(fetcher.calls), 10)
        self.assertLessEqual(fetcher.peak, 3)

    async def test_non_relation_refs_ignored(self):
        fetcher = FakeFetcher()
        page = _with_relations("a", "r1")
        await expand_first_level(fetcher, [page], [PropertyReference("t", "Name", "title")])
        self.assertEqual(fetcher.calls, [])
        self.assertEqual(page.expanded_relations, {})

    async def test_fetch_error_propagates(self):
        fetcher = FakeFetcher(fail="r2")
        with self.assertRaises(NotionError) as cm:
            await expand_first_level(fetcher, [_with_relations("a", "r1", "r2")], [PROJECT])
        self.assertEqual(cm.exception.kind, ErrorKind.NOT_FOUND)


if __name__ == "__main__":
    unittest.main()
