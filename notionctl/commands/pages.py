"""`notionctl pages` commands: retrieve and update pages."""

import json
from pathlib import Path
from typing import Any, Dict, List

from ..errors import ErrorKind, NotionError
from ..expand import RELATION_TYPE, expand_first_level
from ..models import Page, PropertyReference
from ..render import FORMAT_JSON, render_json, render_table, single_page_table
from . import CommandContext, add_expand_argument, add_format_argument, split_names


def register(subparsers) -> None:
    pages = subparsers.add_parser("pages", help="Work with pages")
    sub = pages.add_subparsers(dest="pages_command", metavar="COMMAND", required=True)

    get = sub.add_parser("get", help="Retrieve a page")
    get.add_argument("page_id")
    add_expand_argument(get)
    add_format_argument(get)
    get.set_defaults(handler=run_get)

    update = sub.add_parser("update", help="Update a page's properties")
    update.add_argument("page_id")
    update.add_argument(
        "--props", required=True, help="Path to a JSON file of property updates"
    )
    update.add_argument(
        "--replace-relations",
        action="store_true",
        help="Replace relation values instead of merging with existing ones",
    )
    archive = update.add_mutually_exclusive_group()
    archive.add_argument(
        "--archive", dest="archived", action="store_const", const=True, default=None
    )
    archive.add_argument("--unarchive", dest="archived", action="store_const", const=False)
    add_expand_argument(update, "Relation property names to expand after the update")
    add_format_argument(update)
    update.set_defaults(handler=run_update)


def page_expansion_refs(page: Page, names: List[str]) -> List[PropertyReference]:
    """Relation references for `names`, taken from the page's own properties."""
    refs = []
    for name in names:
        value = page.properties.get(name)
        if value is None:
            raise NotionError(ErrorKind.VALIDATION, f"unknown property {name!r}")
        if value.get("type") != RELATION_TYPE:
            raise NotionError(ErrorKind.VALIDATION, f"property {name!r} is not a relation")
        refs.append(PropertyReference(id=str(value.get("id", "")), name=name, type=RELATION_TYPE))
    return refs


def load_update_payload(path: str) -> Dict[str, Any]:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise NotionError(ErrorKind.VALIDATION, f"read props: {e}") from e
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise NotionError(ErrorKind.VALIDATION, f"decode props: {e}") from e
    if not isinstance(payload, dict):
        raise NotionError(ErrorKind.VALIDATION, "property payload must be a JSON object")
    if not payload:
        raise NotionError(ErrorKind.VALIDATION, "property payload is empty")
    return payload


def _normalize_relations(items: Any) -> List[Dict[str, str]]:
    if not isinstance(items, list):
        raise NotionError(ErrorKind.VALIDATION, "relation value must be a JSON array")
    out = []
    for item in items:
        if not isinstance(item, dict):
            raise NotionError(
                ErrorKind.VALIDATION,
                f"relation entry must be an object, got {type(item).__name__}",
            )
        rel_id = item.get("id")
        if not isinstance(rel_id, str) or not rel_id:
            raise NotionError(ErrorKind.VALIDATION, "relation entry missing id")
        out.append({"id": rel_id})
    return out


def merge_relation_properties(
    existing: Page, updates: Dict[str, Any], replace: bool = False
) -> Dict[str, Any]:
    """
    Merge relation updates with the page's current relation values.

    For properties that are relations on `existing`, the new value is the
    sorted, de-duplicated union of current and requested ids. With `replace`
    the requested ids are only normalized. Other properties pass through.
    Mutates and returns `updates`.
    """
    for name, value in updates.items():
        current = existing.properties.get(name)
        if not current or current.get("type") != RELATION_TYPE:
            continue
        if not isinstance(value, dict) or "relation" not in value:
            continue

        try:
            requested = _normalize_relations(value["relation"])
        except NotionError as e:
            raise e.with_context(property=name)

        if replace:
            value["relation"] = requested
            continue

        ids = set(existing.relation_ids(name))
        ids.update(r["id"] for r in requested)
        value["relation"] = [{"id": rel_id} for rel_id in sorted(ids)]
    return updates


async def _expand_page(client, page: Page, names: List[str], ctx: CommandContext) -> Page:
    if not names:
        return page
    refs = page_expansion_refs(page, names)
    await expand_first_level(client, [page], refs, cancel=ctx.stop)
    return page


def _render_page(ctx: CommandContext, fmt: str, page: Page) -> None:
    if fmt == FORMAT_JSON:
        render_json(page, ctx.stdout)
    else:
        render_table(*single_page_table(page), out=ctx.stdout)


async def run_get(args, ctx: CommandContext) -> int:
    async with ctx.open_client() as client:
        page = await client.retrieve_page(args.page_id, cancel=ctx.stop)
        page = await _expand_page(client, page, split_names(args.expand), ctx)
    _render_page(ctx, args.format, page)
    return 0


async def run_update(args, ctx: CommandContext) -> int:
    updates = load_update_payload(args.props)
    async with ctx.open_client() as client:
        existing = await client.retrieve_page(args.page_id, cancel=ctx.stop)
        merge_relation_properties(existing, updates, replace=args.replace_relations)
        updated = await client.update_page(
            args.page_id, properties=updates, archived=args.archived, cancel=ctx.stop
        )
        updated = await _expand_page(client, updated, split_names(args.expand), ctx)
    _render_page(ctx, args.format, updated)
    return 0
