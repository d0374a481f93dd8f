"""
notionctl command line.

Exit codes: 0 success, 1 Notion/validation error, 2 usage error (argparse),
130 interrupted.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import List, Optional

from . import __version__
from .commands import CommandContext, auth, blocks, changes, ds, pages, sync
from .config import DEFAULT_PROFILE
from .errors import NotionCancelled, NotionError
from .structured_logging import configure_structured_output

logger = logging.getLogger("notionctl")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130

COMMAND_MODULES = (auth, ds, pages, blocks, changes, sync)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notionctl", description="Command line client for the Notion API"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--profile",
        default=DEFAULT_PROFILE,
        help=f"Credential profile to use (default: {DEFAULT_PROFILE})",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)
    for module in COMMAND_MODULES:
        module.register(subparsers)
    return parser


def configure_logging(debug: bool = False) -> None:
    debug = debug or os.environ.get("NOTIONCTL_DEBUG", "0") == "1"
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="[%(asctime)s] %(name)s %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    configure_structured_output(logging.getLogger())
    if debug:
        logger.debug("Debug mode enabled")


async def _run(args, ctx: CommandContext) -> int:
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, ctx.stop.set)
        except (NotImplementedError, RuntimeError) as e:
            # Windows event loops and non-main threads; Ctrl-C still raises KeyboardInterrupt.
            logger.debug(f"Signal handler for {sig.name} unavailable: {e}")
            continue
        installed.append(sig)
    try:
        return await args.handler(args, ctx)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main(argv: Optional[List[str]] = None, ctx: Optional[CommandContext] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.debug)

    if ctx is None:
        ctx = CommandContext(profile=args.profile)
    else:
        ctx.profile = args.profile

    try:
        return asyncio.run(_run(args, ctx))
    except NotionCancelled:
        logger.info("Interrupted")
        return EXIT_INTERRUPTED
    except NotionError as e:
        logger.debug(f"Command failed: {e!r}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_INTERRUPTED
