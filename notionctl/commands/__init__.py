"""
CLI command handlers.

Each submodule exposes `register(subparsers)`, which adds its parsers and binds
an async `handler(args, ctx)` through `set_defaults`.
"""

import asyncio
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, TextIO

from ..client import NotionClient
from ..config import DEFAULT_PROFILE, ProfileStore, load_config
from ..errors import ErrorKind, NotionError
from ..render import FORMAT_JSON, FORMATS


def default_client_factory(profile: str) -> NotionClient:
    return NotionClient.from_config(load_config(profile))


@dataclass
class CommandContext:
    profile: str = DEFAULT_PROFILE
    stdout: TextIO = field(default_factory=lambda: sys.stdout)
    stdin: TextIO = field(default_factory=lambda: sys.stdin)
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    client_factory: Callable[[str], Any] = default_client_factory
    store_factory: Callable[[], ProfileStore] = ProfileStore

    def open_client(self):
        """Client for the active profile; use as `async with ctx.open_client()`."""
        return self.client_factory(self.profile)


def add_format_argument(parser, default: str = FORMAT_JSON) -> None:
    parser.add_argument(
        "--format",
        choices=FORMATS,
        default=default,
        help=f"Output format (default: {default})",
    )


def add_expand_argument(parser, help_text: str = "Relation property names to expand"):
    parser.add_argument(
        "--expand",
        action="append",
        default=[],
        metavar="NAME",
        help=f"{help_text} (repeatable or comma-separated)",
    )


def split_names(values) -> list:
    """Flatten repeated and comma-separated option values."""
    names = []
    for value in values or []:
        names.extend(part.strip() for part in value.split(",") if part.strip())
    return names


def read_json_text(inline: Optional[str], path: Optional[str]) -> str:
    if path:
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise NotionError(ErrorKind.VALIDATION, f"read {path}: {e}") from e
    return (inline or "").strip()


def load_json_value(inline: Optional[str], path: Optional[str], what: str) -> Any:
    """Parse an inline JSON option or a JSON file; None when neither is given."""
    text = read_json_text(inline, path)
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise NotionError(ErrorKind.VALIDATION, f"decode {what}: {e}") from e
