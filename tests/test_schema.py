"""
Tests for the schema index and property identifier mapping.
"""

import unittest

from notionctl.models import DataSource
from notionctl.schema import SchemaIndex, map_property_identifiers

DATA_SOURCE = {
    "object": "data_source",
    "id": "ds-1",
    "title": [{"plain_text": "Tasks"}],
    "properties": {
        "Name": {"id": "title", "name": "Name", "type": "title"},
        "Status": {"id": "s%3Ax", "name": "Status", "type": "status"},
        "Project": {"id": "rel1", "name": "Project", "type": "relation"},
    },
}


class TestSchemaIndex(unittest.TestCase):
    def setUp(self):
        self.ds = DataSource.from_dict(DATA_SOURCE)
        self.index = SchemaIndex(self.ds)

    def test_title_used_as_name(self):
        self.assertEqual(self.ds.name, "Tasks")

    def test_lookups(self):
        self.assertEqual(self.index.id_for_name("  status "), "s%3Ax")
        self.assertEqual(self.index.id_for_name("PROJECT"), "rel1")
        self.assertIsNone(self.index.id_for_name("Owner"))
        self.assertEqual(self.index.name_for_id("rel1"), "Project")
        self.assertEqual(self.index.reference_for_name("project").type, "relation")
        self.assertEqual(self.index.reference_for_id("title").name, "Name")

    def test_sorted_names(self):
        self.assertEqual(self.index.property_names(), ["Name", "Project", "Status"])

    def test_map_identifiers_nested(self):
        payload = {
            "and": [
                {"property": "status", "status": {"equals": "Done"}},
                {"property": "Unknown", "checkbox": {"equals": True}},
                {"timestamp": "last_edited_time", "last_edited_time": {"past_week": {}}},
            ]
        }
        mapped = map_property_identifiers(payload, self.index)
        self.assertEqual(mapped["and"][0]["property"], "s%3Ax")
        self.assertEqual(mapped["and"][1]["property"], "Unknown")
        self.assertNotIn("property", mapped["and"][2])

    def test_map_identifiers_sorts(self):
        sorts = [{"property": "Name", "direction": "ascending"}]
        self.assertEqual(
            map_property_identifiers(sorts, self.index),
            [{"property": "title", "direction": "ascending"}],
        )


if __name__ == "__main__":
    unittest.main()
