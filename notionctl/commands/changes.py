"""`notionctl changes`: pages edited in a time window."""

from datetime import datetime, timezone

from ..changes import parse_timestamp, query_window
from ..errors import ErrorKind, NotionError
from ..expand import expand_first_level
from ..models import QueryDataSourceResponse
from . import CommandContext, add_expand_argument, add_format_argument, split_names
from .ds import render_query_results, resolve_expand_refs, resolve_index


def register(subparsers) -> None:
    changes = subparsers.add_parser(
        "changes", help="List pages edited in a time window, newest first"
    )
    changes.add_argument("--data-source-id", required=True)
    changes.add_argument("--since", required=True, help="Window start (RFC 3339)")
    changes.add_argument("--until", help="Window end (RFC 3339, default: now)")
    add_expand_argument(changes)
    add_format_argument(changes)
    changes.set_defaults(handler=run_changes)


def parse_window(since_text: str, until_text: str = None, now=None):
    since = parse_timestamp(since_text)
    if until_text:
        until = parse_timestamp(until_text)
    else:
        until = now or datetime.now(timezone.utc)
    if until < since:
        raise NotionError(ErrorKind.VALIDATION, "--until must be after --since")
    return since, until


async def run_changes(args, ctx: CommandContext) -> int:
    since, until = parse_window(args.since, args.until)
    async with ctx.open_client() as client:
        index = await resolve_index(client, args.data_source_id, cancel=ctx.stop)
        refs = resolve_expand_refs(index, split_names(args.expand))
        pages = await query_window(
            client, args.data_source_id, since, until, True, cancel=ctx.stop
        )
        if refs:
            await expand_first_level(client, pages, refs, cancel=ctx.stop)
    render_query_results(ctx, args.format, QueryDataSourceResponse(results=pages), index)
    return 0
