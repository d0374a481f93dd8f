"""
Data source schema index.
Resolves property names (case-insensitive) to IDs and back.
"""

from typing import Any, Dict, List, Optional

from .models import DataSource, PropertyReference


def _normalize(name: str) -> str:
    return (name or "").strip().lower()


class SchemaIndex:
    def __init__(self, data_source: DataSource):
        self._by_name: Dict[str, PropertyReference] = {}
        self._by_id: Dict[str, PropertyReference] = {}
        for name, ref in data_source.properties.items():
            self._by_id[ref.id] = ref
            self._by_name[_normalize(name)] = ref
        self._names = sorted(data_source.properties)

    def id_for_name(self, name: str) -> Optional[str]:
        ref = self._by_name.get(_normalize(name))
        return ref.id if ref else None

    def name_for_id(self, property_id: str) -> Optional[str]:
        ref = self._by_id.get(property_id)
        return ref.name if ref else None

    def reference_for_name(self, name: str) -> Optional[PropertyReference]:
        return self._by_name.get(_normalize(name))

    def reference_for_id(self, property_id: str) -> Optional[PropertyReference]:
        return self._by_id.get(property_id)

    def property_names(self) -> List[str]:
        """Sorted property names, for deterministic output."""
        return list(self._names)


def map_property_identifiers(value: Any, index: SchemaIndex) -> Any:
    """
    Rewrite `"property": <name>` entries in a filter or sort payload to IDs.

    Unknown names are left alone so Notion can report them. Mutates and returns
    the payload.
    """
    if isinstance(value, dict):
        for key, item in list(value.items()):
            if key == "property" and isinstance(item, str):
                prop_id = index.id_for_name(item)
                if prop_id:
                    value[key] = prop_id
                continue
            value[key] = map_property_identifiers(item, index)
        return value
    if isinstance(value, list):
        for i, item in enumerate(value):
            value[i] = map_property_identifiers(item, index)
        return value
    return value
