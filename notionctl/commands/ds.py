"""`notionctl ds` commands: list and query data sources."""

import asyncio
from typing import List, Optional

from ..changes import drain_query
from ..errors import ErrorKind, NotionError
from ..expand import RELATION_TYPE, expand_first_level
from ..models import PropertyReference, QueryDataSourceRequest, QueryDataSourceResponse
from ..render import (
    FORMAT_JSON,
    FORMAT_TABLE,
    data_source_rows,
    query_results_table,
    render_json,
    render_table,
)
from ..schema import SchemaIndex, map_property_identifiers
from . import (
    CommandContext,
    add_expand_argument,
    add_format_argument,
    load_json_value,
    split_names,
)

MAX_PAGE_SIZE = 100


def register(subparsers) -> None:
    ds = subparsers.add_parser("ds", help="Work with data sources")
    sub = ds.add_subparsers(dest="ds_command", metavar="COMMAND", required=True)

    list_cmd = sub.add_parser("list", help="List data sources within a database")
    list_cmd.add_argument("--database-id", required=True)
    add_format_argument(list_cmd, default=FORMAT_TABLE)
    list_cmd.set_defaults(handler=run_list)

    query = sub.add_parser("query", help="Query a data source")
    query.add_argument("--data-source-id", required=True)
    filters = query.add_mutually_exclusive_group()
    filters.add_argument("--filter", dest="filter_json", help="Filter as inline JSON")
    filters.add_argument("--filter-file", help="Path to a JSON filter")
    sorts = query.add_mutually_exclusive_group()
    sorts.add_argument("--sorts", dest="sorts_json", help="Sorts as an inline JSON array")
    sorts.add_argument("--sorts-file", help="Path to a JSON sorts array")
    query.add_argument(
        "--filter-properties",
        action="append",
        default=[],
        metavar="NAME",
        help="Only return these properties (repeatable or comma-separated)",
    )
    add_expand_argument(query)
    query.add_argument("--start-cursor", default="")
    query.add_argument("--page-size", type=int, default=0, help="Page size (max 100)")
    query.add_argument(
        "--all", dest="fetch_all", action="store_true", help="Fetch every result page"
    )
    add_format_argument(query)
    query.set_defaults(handler=run_query)


async def run_list(args, ctx: CommandContext) -> int:
    async with ctx.open_client() as client:
        sources = await client.list_data_sources(args.database_id, cancel=ctx.stop)
    if args.format == FORMAT_JSON:
        render_json(sources, ctx.stdout)
    else:
        render_table(*data_source_rows(sources), out=ctx.stdout)
    return 0


async def resolve_index(client, data_source_id: str, cancel=None) -> SchemaIndex:
    data_source = await client.get_data_source(data_source_id, cancel=cancel)
    return SchemaIndex(data_source)


def resolve_expand_refs(index: SchemaIndex, names: List[str]) -> List[PropertyReference]:
    refs = []
    for name in names:
        ref = index.reference_for_name(name)
        if ref is None:
            raise NotionError(ErrorKind.VALIDATION, f"unknown relation {name!r}")
        if ref.type != RELATION_TYPE:
            raise NotionError(ErrorKind.VALIDATION, f"property {name!r} is not a relation")
        refs.append(ref)
    return refs


def build_query_request(args, index: SchemaIndex) -> QueryDataSourceRequest:
    if args.page_size < 0 or args.page_size > MAX_PAGE_SIZE:
        raise NotionError(
            ErrorKind.VALIDATION, f"--page-size must be at most {MAX_PAGE_SIZE}"
        )

    query_filter = load_json_value(args.filter_json, args.filter_file, "filter")
    if query_filter is not None:
        query_filter = map_property_identifiers(query_filter, index)

    sorts = load_json_value(args.sorts_json, args.sorts_file, "sorts")
    if sorts is not None:
        if not isinstance(sorts, list):
            raise NotionError(ErrorKind.VALIDATION, "sorts payload must be a JSON array")
        sorts = map_property_identifiers(sorts, index)

    filter_properties = []
    for name in split_names(args.filter_properties):
        prop_id = index.id_for_name(name)
        if prop_id is None:
            raise NotionError(ErrorKind.VALIDATION, f"unknown property {name!r}")
        filter_properties.append(prop_id)

    return QueryDataSourceRequest(
        filter=query_filter,
        sorts=sorts,
        filter_properties=filter_properties or None,
        start_cursor=args.start_cursor,
        page_size=args.page_size,
    )


async def execute_query(
    client,
    data_source_id: str,
    request: QueryDataSourceRequest,
    fetch_all: bool,
    cancel: Optional[asyncio.Event] = None,
) -> QueryDataSourceResponse:
    if fetch_all:
        return await drain_query(client, data_source_id, request, cancel=cancel)
    return await client.query_data_source(data_source_id, request, cancel=cancel)


def render_query_results(
    ctx: CommandContext, fmt: str, response: QueryDataSourceResponse, index: SchemaIndex
) -> None:
    if fmt == FORMAT_JSON:
        render_json(response, ctx.stdout)
    else:
        render_table(*query_results_table(response.results, index), out=ctx.stdout)


async def run_query(args, ctx: CommandContext) -> int:
    async with ctx.open_client() as client:
        index = await resolve_index(client, args.data_source_id, cancel=ctx.stop)
        request = build_query_request(args, index)
        refs = resolve_expand_refs(index, split_names(args.expand))
        response = await execute_query(
            client, args.data_source_id, request, args.fetch_all, cancel=ctx.stop
        )
        if refs:
            await expand_first_level(client, response.results, refs, cancel=ctx.stop)
    render_query_results(ctx, args.format, response, index)
    return 0
