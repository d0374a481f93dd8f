"""
Notion API Models.
Dataclasses for the payloads notionctl reads and writes.

Property values are kept as the raw dicts Notion returns; rendering and
relation handling look at the `type` key and the matching sub-object.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def _require_dict(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise TypeError(f"{what} must be a JSON object, got {type(data).__name__}")
    return data


@dataclass
class PropertyReference:
    id: str
    name: str
    type: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any], name: str = "") -> "PropertyReference":
        data = _require_dict(data, "property")
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name") or name),
            type=str(data.get("type", "")),
        )


@dataclass
class DataSource:
    id: str
    name: str = ""
    database_id: str = ""
    data_source: str = ""
    created_time: str = ""
    last_edited_time: str = ""
    properties: Dict[str, PropertyReference] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataSource":
        data = _require_dict(data, "data source")
        name = data.get("name")
        if not name and isinstance(data.get("title"), list):
            name = "".join(t.get("plain_text", "") for t in data["title"])
        props = {
            key: PropertyReference.from_dict(value, name=key)
            for key, value in (data.get("properties") or {}).items()
        }
        return cls(
            id=str(data.get("id", "")),
            name=str(name or ""),
            database_id=str(data.get("database_id", "")),
            data_source=str(data.get("data_source", "")),
            created_time=str(data.get("created_time", "")),
            last_edited_time=str(data.get("last_edited_time", "")),
            properties=props,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "database_id": self.database_id,
            "data_source": self.data_source,
            "created_time": self.created_time,
            "last_edited_time": self.last_edited_time,
            "properties": {
                k: {"id": v.id, "name": v.name, "type": v.type}
                for k, v in self.properties.items()
            },
        }


@dataclass
class Page:
    id: str
    object: str = "page"
    url: str = ""
    archived: bool = False
    created_time: str = ""
    last_edited_time: str = ""
    parent: Dict[str, Any] = field(default_factory=dict)
    icon: Optional[Dict[str, Any]] = None
    properties: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    expanded_relations: Dict[str, List["Page"]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Page":
        data = _require_dict(data, "page")
        if "id" not in data:
            raise KeyError("page is missing 'id'")
        return cls(
            id=str(data["id"]),
            object=str(data.get("object", "page")),
            url=str(data.get("url", "")),
            archived=bool(data.get("archived", False)),
            created_time=str(data.get("created_time", "")),
            last_edited_time=str(data.get("last_edited_time", "")),
            parent=dict(data.get("parent") or {}),
            icon=data.get("icon"),
            properties=dict(data.get("properties") or {}),
        )

    def relation_ids(self, name: str) -> List[str]:
        value = self.properties.get(name) or {}
        if value.get("type") != "relation":
            return []
        return [r["id"] for r in value.get("relation") or [] if r.get("id")]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "object": self.object,
            "id": self.id,
            "url": self.url,
            "archived": self.archived,
            "created_time": self.created_time,
            "last_edited_time": self.last_edited_time,
            "parent": self.parent,
            "properties": self.properties,
        }
        if self.icon is not None:
            data["icon"] = self.icon
        if self.expanded_relations:
            data["expanded_relations"] = {
                name: [p.to_dict() for p in pages]
                for name, pages in self.expanded_relations.items()
            }
        return data


@dataclass
class QueryDataSourceRequest:
    filter: Optional[Any] = None
    sorts: Optional[List[Any]] = None
    filter_properties: Optional[List[str]] = None
    start_cursor: str = ""
    page_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Request body; empty fields are omitted like Notion expects."""
        body: Dict[str, Any] = {}
        if self.filter is not None:
            body["filter"] = self.filter
        if self.sorts:
            body["sorts"] = self.sorts
        if self.start_cursor:
            body["start_cursor"] = self.start_cursor
        if self.page_size > 0:
            body["page_size"] = self.page_size
        return body


@dataclass
class QueryDataSourceResponse:
    results: List[Page] = field(default_factory=list)
    has_more: bool = False
    next_cursor: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueryDataSourceResponse":
        data = _require_dict(data, "query response")
        results = data.get("results")
        if not isinstance(results, list):
            raise TypeError("query response is missing a 'results' array")
        return cls(
            results=[Page.from_dict(item) for item in results],
            has_more=bool(data.get("has_more", False)),
            next_cursor=str(data.get("next_cursor") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [p.to_dict() for p in self.results],
            "has_more": self.has_more,
            "next_cursor": self.next_cursor or None,
        }


@dataclass
class BlockChildrenResponse:
    results: List[Dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    next_cursor: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlockChildrenResponse":
        data = _require_dict(data, "block children response")
        return cls(
            results=list(data.get("results") or []),
            has_more=bool(data.get("has_more", False)),
            next_cursor=str(data.get("next_cursor") or ""),
        )


@dataclass
class PropertyItemResponse:
    results: List[Dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    next_cursor: str = ""
    object: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PropertyItemResponse":
        data = _require_dict(data, "property item response")
        results = data.get("results")
        if results is None:
            # Non-paginated property items come back as a single object.
            results = [data]
        return cls(
            results=list(results),
            has_more=bool(data.get("has_more", False)),
            next_cursor=str(data.get("next_cursor") or ""),
            object=str(data.get("object", "")),
        )
