"""`notionctl sync watch`: stream webhook deliveries and polling sweeps."""

from datetime import timedelta

from ..changes import parse_timestamp
from ..watch import (
    DEFAULT_LOOKBACK,
    DEFAULT_POLL_INTERVAL,
    WatchOptions,
    WatchReconciler,
    json_lines_sink,
)
from ..webhook import DEFAULT_CALLBACK_PATH, DEFAULT_LISTEN
from . import CommandContext


def register(subparsers) -> None:
    sync = subparsers.add_parser("sync", help="Change synchronization")
    sub = sync.add_subparsers(dest="sync_command", metavar="COMMAND", required=True)

    watch = sub.add_parser(
        "watch", help="Emit JSON lines for webhook deliveries and polling sweeps"
    )
    watch.add_argument("--data-source-id", required=True)
    watch.add_argument(
        "--listen", default=DEFAULT_LISTEN, help=f"Webhook listen address (default {DEFAULT_LISTEN})"
    )
    watch.add_argument("--callback-path", default=DEFAULT_CALLBACK_PATH)
    watch.add_argument(
        "--webhook-secret", default="", help="Shared secret for Notion-Signature checks"
    )
    watch.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL.total_seconds(),
        metavar="SECONDS",
    )
    watch.add_argument(
        "--lookback",
        type=float,
        default=DEFAULT_LOOKBACK.total_seconds(),
        metavar="SECONDS",
        help="Bootstrap window when --since is not given",
    )
    watch.add_argument("--since", help="Bootstrap window start (RFC 3339)")
    watch.add_argument(
        "--no-webhook",
        dest="disable_webhook",
        action="store_true",
        help="Poll only; do not start the webhook receiver",
    )
    watch.add_argument(
        "--suppress-empty", action="store_true", help="Skip poll events with no pages"
    )
    watch.set_defaults(handler=run_watch)


def build_watch_options(args) -> WatchOptions:
    options = WatchOptions(
        data_source_id=args.data_source_id,
        since=parse_timestamp(args.since) if args.since else None,
        lookback=timedelta(seconds=args.lookback),
        poll_interval=timedelta(seconds=args.poll_interval),
        listen=args.listen,
        callback_path=args.callback_path,
        webhook_secret=args.webhook_secret or None,
        disable_webhook=args.disable_webhook,
        suppress_empty=args.suppress_empty,
    )
    options.validate()
    return options


async def run_watch(args, ctx: CommandContext) -> int:
    options = build_watch_options(args)
    async with ctx.open_client() as client:
        reconciler = WatchReconciler(client, options, json_lines_sink(ctx.stdout))
        await reconciler.run(ctx.stop)
    return 0
