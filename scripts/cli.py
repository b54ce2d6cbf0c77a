"""Minimal CLI entry point for running and inspecting mailbox syncs."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from datetime import date

from mailbox_sync.config.settings import MailboxSyncSettings
from mailbox_sync.core.models import SyncSummary
from mailbox_sync.pipeline.orchestrator import SyncOrchestrator
from mailbox_sync.pipeline.scheduler import SyncCoordinator


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(summary: SyncSummary) -> None:
    """Print progress updates to stdout."""
    print(
        f"[{summary.folder}:{summary.current_stage}] "
        f"imported={summary.imported_count} "
        f"skipped={summary.skipped_count} "
        f"failed={summary.failed_count} "
        f"last_uid={summary.last_uid}",
        end="\r",
        flush=True,
    )


def print_summary(summary: SyncSummary) -> None:
    print(f"\n\n{summary.folder} ({summary.mode}): {summary.current_stage}")
    print(f"  imported:           {summary.imported_count}")
    print(f"  skipped:            {summary.skipped_count}")
    print(f"  failed:             {summary.failed_count}")
    print(f"  bodies unavailable: {summary.body_unavailable_count}")
    print(f"  threads created:    {summary.threads_created}")
    print(f"  orders linked:      {summary.orders_linked}")
    print(f"  last UID:           {summary.last_uid}")
    for error in summary.errors:
        print(f"  error: {error}")


def _parse_date(value: str) -> date:
    """argparse type for YYYY-MM-DD dates."""
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from e


def _add_folder_arg(subparser: argparse.ArgumentParser | argparse._MutuallyExclusiveGroup) -> None:
    """Add the --folder flag to a subparser or argument group."""
    subparser.add_argument(
        "--folder",
        "-f",
        default=None,
        help="IMAP folder (default: first configured folder)",
    )


def _validate_backfill_args(args: argparse.Namespace) -> None:
    """Reject non-positive backfill limits."""
    if getattr(args, "limit", None) is not None and args.limit <= 0:
        print("Error: --limit must be positive", file=sys.stderr)
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Mailbox Sync - Import IMAP mail into threaded, order-linked conversations"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Import messages newer than the checkpoint")
    folder_group = sync_parser.add_mutually_exclusive_group()
    _add_folder_arg(folder_group)
    folder_group.add_argument(
        "--all-folders",
        action="store_true",
        dest="all_folders",
        help="Sync every configured folder",
    )
    sync_parser.add_argument(
        "--force-backfill",
        action="store_true",
        dest="force_backfill",
        help="Ignore the checkpoint and import the most recent messages",
    )

    # backfill command
    backfill_parser = subparsers.add_parser(
        "backfill", help="Import the most recent messages of a folder"
    )
    _add_folder_arg(backfill_parser)
    backfill_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Number of most recent messages (default: from settings)",
    )
    backfill_parser.add_argument(
        "--since",
        type=_parse_date,
        default=None,
        help="Only messages on or after this date (YYYY-MM-DD)",
    )

    # status command
    subparsers.add_parser("status", help="Show store counts and folder checkpoints")

    # retry-failed command
    retry_parser = subparsers.add_parser(
        "retry-failed", help="Re-import messages that failed in earlier runs"
    )
    _add_folder_arg(retry_parser)

    # match-order command
    match_parser = subparsers.add_parser(
        "match-order", help="Show which order a message text would be linked to"
    )
    match_parser.add_argument("text", help="Message body text")
    match_parser.add_argument("--sender", required=True, help="Sender email address")
    match_parser.add_argument("--subject", default="", help="Message subject")

    # serve command
    subparsers.add_parser("serve", help="Run scheduled syncs until interrupted")

    return parser


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "backfill":
        _validate_backfill_args(args)

    settings = MailboxSyncSettings()
    setup_logging(settings.log_level)

    orchestrator = SyncOrchestrator(settings=settings, on_progress=on_progress)

    try:
        if args.command == "sync":
            folders = settings.folders if args.all_folders else [args.folder]
            for folder in folders:
                summary = orchestrator.run_incremental_sync(
                    folder, force_backfill=args.force_backfill
                )
                print_summary(summary)

        elif args.command == "backfill":
            summary = orchestrator.run_backfill(args.folder, args.limit, since=args.since)
            print_summary(summary)

        elif args.command == "status":
            status = orchestrator.get_status()
            checkpoints = status.pop("checkpoints", {})
            print("\nStore counts:")
            for name, count in sorted(status.items()):
                print(f"  {name}: {count}")
            print("\nCheckpoints:")
            for folder, last_uid in sorted(checkpoints.items()):
                print(f"  {folder}: {last_uid}")

        elif args.command == "retry-failed":
            summary = orchestrator.retry_failed(args.folder)
            print_summary(summary)

        elif args.command == "match-order":
            match = orchestrator.match_order(args.subject, args.text, args.sender)
            if match.order is None:
                print("\nNo matching order")
            else:
                print(f"\nMatched order {match.order.order_number} via {match.method}")
                for order in match.all_matches:
                    print(
                        f"  {order.order_number:10s} {order.customer_email:40s} "
                        f"{order.order_date.date().isoformat()}"
                    )

        elif args.command == "serve":
            coordinator = SyncCoordinator(settings)
            signal.signal(signal.SIGTERM, lambda *_: coordinator.stop())
            coordinator.start()
            try:
                coordinator.wait()
            finally:
                coordinator.stop()

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        orchestrator.close()


if __name__ == "__main__":
    main()
