"""
Output rendering for CLI commands: indented JSON and aligned text tables.
"""

import json
import sys
from typing import Any, Callable, Dict, List, Optional, Sequence, TextIO, Tuple

from .changes import format_timestamp, parse_timestamp
from .errors import NotionError
from .models import DataSource, Page
from .schema import SchemaIndex

FORMAT_JSON = "json"
FORMAT_TABLE = "table"
FORMATS = (FORMAT_JSON, FORMAT_TABLE)

COLUMN_PADDING = 2

Row = List[str]


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value


def render_json(value: Any, out: Optional[TextIO] = None) -> None:
    out = out or sys.stdout
    out.write(json.dumps(_to_jsonable(value), indent=2, ensure_ascii=False) + "\n")


def format_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Left-aligned columns separated by two spaces; the last cell is not padded."""
    lines = ([list(headers)] if headers else []) + [list(r) for r in rows]
    widths: Dict[int, int] = {}
    for line in lines:
        for i, cell in enumerate(line[:-1]):
            widths[i] = max(widths.get(i, 0), len(cell))

    out = []
    for line in lines:
        cells = [
            cell.ljust(widths[i] + COLUMN_PADDING) if i < len(line) - 1 else cell
            for i, cell in enumerate(line)
        ]
        out.append("".join(cells))
    return "\n".join(out) + ("\n" if out else "")


def render_table(
    headers: Sequence[str], rows: Sequence[Sequence[str]], out: Optional[TextIO] = None
) -> None:
    (out or sys.stdout).write(format_table(headers, rows))


# --- Property summaries ---


def _plain_text(parts: Any) -> str:
    return "".join(p.get("plain_text", "") for p in parts or [] if isinstance(p, dict))


def _format_number(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _named(value: Any) -> str:
    return value.get("name", "") if isinstance(value, dict) else ""


def _join_names(values: Any) -> str:
    return ", ".join(_named(v) for v in values or [])


def _summary_checkbox(val: Dict[str, Any]) -> str:
    checked = val.get("checkbox")
    if checked is None:
        return ""
    return "true" if checked else "false"


def _summary_date(val: Dict[str, Any]) -> str:
    date = val.get("date")
    if not isinstance(date, dict):
        return ""
    if date.get("end"):
        return f"{date.get('start', '')} → {date['end']}"
    return date.get("start") or ""


def _summary_people(val: Dict[str, Any]) -> str:
    return ", ".join(
        p.get("name") or p.get("id", "") for p in val.get("people") or []
    )


def _summary_relation(val: Dict[str, Any]) -> str:
    return ", ".join(r.get("id", "") for r in val.get("relation") or [])


def _summary_rollup(val: Dict[str, Any]) -> str:
    rollup = val.get("rollup")
    if not isinstance(rollup, dict):
        return ""
    kind = rollup.get("type", "")
    if kind == "number":
        return _format_number(rollup.get("number"))
    if kind == "array":
        return ", ".join(summarize_property(item) for item in rollup.get("array") or [])
    return kind


def _summary_unique_id(val: Dict[str, Any]) -> str:
    uid = val.get("unique_id")
    if not isinstance(uid, dict):
        return ""
    return f"{uid.get('prefix') or ''}{uid.get('number', '')}"


PROPERTY_SUMMARIES: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "title": lambda v: _plain_text(v.get("title")),
    "rich_text": lambda v: _plain_text(v.get("rich_text")),
    "number": lambda v: _format_number(v.get("number")),
    "status": lambda v: _named(v.get("status")),
    "select": lambda v: _named(v.get("select")),
    "multi_select": lambda v: _join_names(v.get("multi_select")),
    "checkbox": _summary_checkbox,
    "date": _summary_date,
    "people": _summary_people,
    "relation": _summary_relation,
    "url": lambda v: v.get("url") or "",
    "email": lambda v: v.get("email") or "",
    "phone_number": lambda v: v.get("phone_number") or "",
    "rollup": _summary_rollup,
    "unique_id": _summary_unique_id,
}


def summarize_property(val: Optional[Dict[str, Any]]) -> str:
    """One-line text for a property value, by Notion property type."""
    if not val:
        return ""
    kind = val.get("type", "")
    summary = PROPERTY_SUMMARIES.get(kind)
    if summary:
        return summary(val)
    return json.dumps(val, ensure_ascii=False, sort_keys=True)


def _format_edited(text: str) -> str:
    if not text:
        return ""
    try:
        return format_timestamp(parse_timestamp(text))
    except NotionError:
        return text


# --- Tables ---


def data_source_rows(sources: List[DataSource]) -> Tuple[Row, List[Row]]:
    headers = ["ID", "Name", "Type", "Properties"]
    rows = [
        [ds.id, ds.name, ds.data_source, str(len(ds.properties))]
        for ds in sorted(sources, key=lambda ds: ds.name)
    ]
    return headers, rows


def query_results_table(
    pages: List[Page], index: SchemaIndex
) -> Tuple[Row, List[Row]]:
    names = index.property_names()
    refs = [index.reference_for_name(name) for name in names]
    headers = ["ID", "Last Edited"] + [f"{ref.name} ({ref.type})" for ref in refs]
    rows = []
    for page in pages:
        row = [page.id, _format_edited(page.last_edited_time)]
        row.extend(summarize_property(page.properties.get(ref.name)) for ref in refs)
        rows.append(row)
    return headers, rows


def page_rows(pages: List[Page]) -> Tuple[Row, List[Row]]:
    """Schema-free page listing used when no data source index is at hand."""
    headers = ["ID", "Last Edited", "URL"]
    rows = [[p.id, _format_edited(p.last_edited_time), p.url] for p in pages]
    return headers, rows


def single_page_table(page: Page) -> Tuple[Row, List[Row]]:
    headers = ["Field", "Value"]
    rows = [["ID", page.id], ["URL", page.url]]
    if page.last_edited_time:
        rows.append(["Last Edited", _format_edited(page.last_edited_time)])
    for name in sorted(page.properties):
        rows.append([name, summarize_property(page.properties[name])])
    for name in sorted(page.expanded_relations):
        titles = ", ".join(_page_title(p) or p.id for p in page.expanded_relations[name])
        rows.append([f"{name} (expanded)", titles])
    return headers, rows


def _page_title(page: Page) -> str:
    for value in page.properties.values():
        if value.get("type") == "title":
            return _plain_text(value.get("title"))
    return ""
