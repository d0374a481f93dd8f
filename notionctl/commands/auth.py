"""`notionctl auth` commands."""

import getpass
import logging

from ..config import DEFAULT_NOTION_VERSION
from ..errors import ErrorKind, NotionError
from . import CommandContext

logger = logging.getLogger(__name__)


def register(subparsers) -> None:
    auth = subparsers.add_parser("auth", help="Manage stored credentials")
    sub = auth.add_subparsers(dest="auth_command", metavar="COMMAND", required=True)

    login = sub.add_parser("login", help="Store a Notion integration token")
    login.add_argument(
        "--token", help="Integration token to store (read from stdin if omitted)"
    )
    login.add_argument(
        "--notion-version",
        default=DEFAULT_NOTION_VERSION,
        help="Notion-Version header to use for this profile",
    )
    login.set_defaults(handler=run_login)


def _prompt_for_token(ctx: CommandContext) -> str:
    if ctx.stdin.isatty():
        return getpass.getpass("Notion token: ").strip()
    return ctx.stdin.read().strip()


async def run_login(args, ctx: CommandContext) -> int:
    token = (args.token or "").strip() or _prompt_for_token(ctx)
    if not token:
        raise NotionError(ErrorKind.VALIDATION, "token cannot be empty")
    version = (args.notion_version or "").strip() or DEFAULT_NOTION_VERSION

    store = ctx.store_factory()
    store.save_token(ctx.profile, token, version)
    logger.debug(f"Credentials written to {store.path}")
    ctx.stdout.write(
        f"Saved credentials for profile {ctx.profile!r} (Notion-Version {version})\n"
    )
    return 0
