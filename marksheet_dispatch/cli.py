"""
Command-line interface for the marksheet dispatch service.

Usage:
    python -m marksheet_dispatch process-scheduled [--loop]
    python -m marksheet_dispatch exam-stats --department CSE [--staff-id ID]
    python -m marksheet_dispatch hod-respond --actor-id HOD --response approved ID [ID ...]
"""

import argparse
import asyncio
import logging
from typing import Optional, Sequence

import httpx

from marksheet_dispatch.client import DEFAULT_API_URL, MarksheetApiClient
from marksheet_dispatch.config import get_settings
from marksheet_dispatch.db.actors import fetch_actor_profile
from marksheet_dispatch.db.marksheets import SupabaseMarksheetStore
from marksheet_dispatch.db.supabase_client import get_supabase_client
from marksheet_dispatch.errors import WorkflowError
from marksheet_dispatch.middleware.logging import configure_logging
from marksheet_dispatch.models.marksheet import MarksheetFilter
from marksheet_dispatch.services.bulk_coordinator import BulkOperationCoordinator
from marksheet_dispatch.services.delivery import HttpDeliveryChannel
from marksheet_dispatch.services.examination_grouping import examination_stats
from marksheet_dispatch.services.scheduled_dispatch import ScheduledDispatchRunner
from marksheet_dispatch.services.signature_gate import SignatureGate
from marksheet_dispatch.services.transition_service import TransitionService

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="marksheet-dispatch",
        description="Marksheet Dispatch CLI - scheduled dispatch, examination reports and HOD responses"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    scheduled_parser = subparsers.add_parser(
        "process-scheduled",
        help="Dispatch approved marksheets whose scheduled date is due"
    )
    scheduled_parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running, one pass every SCHEDULED_DISPATCH_INTERVAL_SECONDS"
    )

    stats_parser = subparsers.add_parser(
        "exam-stats",
        help="Print per-examination status counts"
    )
    stats_parser.add_argument(
        "--department",
        "-d",
        type=str,
        default=None,
        help="Department code, e.g. CSE (default: all departments)"
    )
    stats_parser.add_argument(
        "--staff-id",
        "-s",
        type=str,
        default=None,
        help="Only marksheets owned by this staff member"
    )

    respond_parser = subparsers.add_parser(
        "hod-respond",
        help="Approve, reject or reschedule dispatch requests through the API"
    )
    respond_parser.add_argument(
        "marksheet_ids",
        nargs="+",
        help="Marksheet IDs to respond to"
    )
    respond_parser.add_argument(
        "--actor-id",
        required=True,
        help="HOD user ID"
    )
    respond_parser.add_argument(
        "--response",
        required=True,
        choices=["approved", "rejected", "rescheduled"],
        help="HOD response"
    )
    respond_parser.add_argument(
        "--comments",
        default=None,
        help="Comments shown to staff"
    )
    respond_parser.add_argument(
        "--scheduled-date",
        default=None,
        help="ISO-8601 dispatch time (required for rescheduled)"
    )
    respond_parser.add_argument(
        "--api-url",
        default=DEFAULT_API_URL,
        help=f"API server base URL (default: {DEFAULT_API_URL})"
    )

    return parser


def build_runner() -> ScheduledDispatchRunner:
    """Wire the scheduled dispatch runner against Supabase and the delivery channel."""
    settings = get_settings()
    client = get_supabase_client()
    store = SupabaseMarksheetStore(client)
    gate = SignatureGate(lambda actor_id: fetch_actor_profile(client, actor_id))
    service = TransitionService(store, gate, HttpDeliveryChannel())
    coordinator = BulkOperationCoordinator(
        service.apply_transition,
        signature_gate=gate,
        concurrency_limit=settings.bulk_concurrency_limit,
    )
    return ScheduledDispatchRunner(
        store,
        coordinator,
        window_minutes=settings.upcoming_dispatch_window_minutes,
    )


async def process_scheduled_command(args: argparse.Namespace) -> int:
    """
    Run one (or, with --loop, repeated) scheduled dispatch passes.

    Returns:
        int: Exit code (0 if nothing failed, 1 otherwise)
    """
    runner = build_runner()
    if args.loop:
        await runner.run_forever(get_settings().scheduled_dispatch_interval_seconds)
        return 0

    summary = await runner.run_once()
    print(f"Due:        {summary.due}")
    print(f"Dispatched: {summary.dispatched}")
    print(f"Failed:     {summary.failed}")
    print(f"Upcoming:   {len(summary.upcoming_ids)}")
    return 0 if summary.failed == 0 else 1


async def exam_stats_command(args: argparse.Namespace) -> int:
    """Print status counts per examination."""
    store = SupabaseMarksheetStore(get_supabase_client())
    marksheets = await store.fetch_eligible_marksheets(
        MarksheetFilter(department=args.department, staff_id=args.staff_id, limit=1000)
    )
    stats = examination_stats(marksheets)
    if not stats:
        print("No marksheets found")
        return 0

    columns = ["total", "draft", "verified", "requested", "approved", "dispatched", "rejected", "rescheduled"]
    name_width = max(len("Examination"), *(len(name) for name in stats))
    print("Examination".ljust(name_width) + "".join(c.rjust(12) for c in columns))
    for name in sorted(stats):
        row = stats[name].model_dump()
        print(name.ljust(name_width) + "".join(str(row[c]).rjust(12) for c in columns))
    return 0


async def hod_respond_command(args: argparse.Namespace) -> int:
    """
    Send one bulk HOD response through the API server.

    Returns:
        int: Exit code (0 if every marksheet succeeded, 1 otherwise)
    """
    async with MarksheetApiClient(args.actor_id, api_url=args.api_url) as api:
        outcome = await api.hod_respond_all(
            args.marksheet_ids,
            args.response,
            comments=args.comments,
            scheduled_dispatch_date=args.scheduled_date,
        )

    if outcome.success_message():
        print(outcome.success_message())
    if outcome.failure_message():
        print(outcome.failure_message())
    for failed in outcome.failed:
        error = failed.error
        print(f"  {failed.marksheet_id}: [{error.code}] {error.message}" if error else f"  {failed.marksheet_id}")
    return 0 if outcome.blocking_error is None and outcome.failure_count == 0 else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = get_settings()
    except ValueError as e:
        print(f"Configuration error: {e}")
        print("\nMake sure you have a .env file with:")
        print("  SUPABASE_URL=https://your-project.supabase.co")
        print("  SUPABASE_KEY=your_anon_key")
        return 1
    configure_logging(settings.log_level)

    handlers = {
        "process-scheduled": process_scheduled_command,
        "exam-stats": exam_stats_command,
        "hod-respond": hod_respond_command,
    }
    try:
        return asyncio.run(handlers[args.command](args))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 1
    except WorkflowError as e:
        print(f"Error [{e.code}]: {e.message}")
        return 1
    except httpx.ConnectError:
        print(f"Cannot reach API server at {getattr(args, 'api_url', DEFAULT_API_URL)}. Is it running?")
        return 1
