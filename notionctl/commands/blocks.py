"""`notionctl blocks` commands."""

import json
from pathlib import Path
from typing import Any, Dict, List

from ..errors import ErrorKind, NotionError
from . import CommandContext


def register(subparsers) -> None:
    blocks = subparsers.add_parser("blocks", help="Work with blocks")
    sub = blocks.add_subparsers(dest="blocks_command", metavar="COMMAND", required=True)

    append = sub.add_parser("append", help="Append child blocks to a block or page")
    append.add_argument("block_id")
    append.add_argument(
        "--blocks",
        required=True,
        help='Path to a JSON array of blocks (or {"children": [...]})',
    )
    append.set_defaults(handler=run_append)


def load_blocks(path: str) -> List[Dict[str, Any]]:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise NotionError(ErrorKind.VALIDATION, f"read blocks: {e}") from e
    except json.JSONDecodeError as e:
        raise NotionError(ErrorKind.VALIDATION, f"decode blocks: {e}") from e

    if isinstance(payload, dict):
        payload = payload.get("children")
    if not isinstance(payload, list) or not all(isinstance(b, dict) for b in payload):
        raise NotionError(
            ErrorKind.VALIDATION, "blocks file must hold a JSON array of block objects"
        )
    if not payload:
        raise NotionError(ErrorKind.VALIDATION, "no blocks to append")
    return payload


async def run_append(args, ctx: CommandContext) -> int:
    blocks = load_blocks(args.blocks)
    async with ctx.open_client() as client:
        await client.append_block_children(args.block_id, blocks, cancel=ctx.stop)
    ctx.stdout.write(f"Appended {len(blocks)} blocks to {args.block_id}\n")
    return 0
