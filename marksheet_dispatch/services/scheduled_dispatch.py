"""
Scheduled dispatch service.

Approved marksheets may carry a scheduled dispatch date. A periodic pass
dispatches the ones that are due through the normal ``send_dispatch``
transition (fanned out per owning staff member by the bulk coordinator) and
flags the ones coming up within the notification window so staff are told
once. Marksheets whose last delivery failed are left for a manual retry.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List

from pydantic import BaseModel, Field

from marksheet_dispatch.models.actor import Actor
from marksheet_dispatch.models.marksheet import ApprovedByHod, Marksheet, MarksheetFilter
from marksheet_dispatch.services.bulk_coordinator import BulkOperationCoordinator
from marksheet_dispatch.services.transition_service import MarksheetStore, TransitionAction
from marksheet_dispatch.services.workflow import mark_pre_dispatch_notified

logger = logging.getLogger(__name__)


class ScheduledRunSummary(BaseModel):
    due: int = Field(ge=0, default=0)
    dispatched: int = Field(ge=0, default=0)
    failed: int = Field(ge=0, default=0)
    upcoming_ids: List[str] = Field(default_factory=list)


def _scheduled(marksheet: Marksheet):
    state = marksheet.state
    if isinstance(state, ApprovedByHod) and state.scheduled_dispatch_date is not None:
        return state
    return None


def find_due_dispatches(marksheets: Iterable[Marksheet], now: datetime) -> List[Marksheet]:
    """Approved, scheduled at or before ``now``, and not already failed."""
    due = []
    for marksheet in marksheets:
        state = _scheduled(marksheet)
        if state and state.scheduled_dispatch_date <= now and state.dispatch_error is None:
            due.append(marksheet)
    return due


def find_upcoming_dispatches(
    marksheets: Iterable[Marksheet],
    now: datetime,
    window: timedelta,
) -> List[Marksheet]:
    """Approved, scheduled within ``window`` from now, staff not yet notified."""
    upcoming = []
    for marksheet in marksheets:
        state = _scheduled(marksheet)
        if (
            state
            and now < state.scheduled_dispatch_date <= now + window
            and not state.pre_dispatch_notification_sent
        ):
            upcoming.append(marksheet)
    return upcoming


class ScheduledDispatchRunner:
    """Runs scheduled dispatch passes against the store."""

    def __init__(
        self,
        store: MarksheetStore,
        coordinator: BulkOperationCoordinator,
        window_minutes: int = 60,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.coordinator = coordinator
        self.window = timedelta(minutes=window_minutes)
        self.clock = clock

    async def run_once(self) -> ScheduledRunSummary:
        now = self.clock()
        approved = await self.store.fetch_eligible_marksheets(
            MarksheetFilter(statuses=["approved_by_hod"], limit=1000)
        )

        summary = ScheduledRunSummary()
        for marksheet in find_upcoming_dispatches(approved, now, self.window):
            await self.store.save_marksheet(mark_pre_dispatch_notified(marksheet))
            summary.upcoming_ids.append(marksheet.id)
            logger.info(
                f"Upcoming dispatch for marksheet {marksheet.id} "
                f"(staff {marksheet.staff_id}) at {marksheet.state.scheduled_dispatch_date.isoformat()}"
            )

        due = find_due_dispatches(approved, now)
        summary.due = len(due)
        by_staff: Dict[str, List[Marksheet]] = {}
        for marksheet in due:
            by_staff.setdefault(marksheet.staff_id, []).append(marksheet)

        # Each owner dispatches their own marksheets.
        outcomes = await asyncio.gather(*(
            self.coordinator.run(
                group,
                TransitionAction.SEND_DISPATCH,
                Actor(
                    id=staff_id,
                    role="staff",
                    department=group[0].department,
                    name=group[0].staff_name,
                ),
            )
            for staff_id, group in by_staff.items()
        ))
        summary.dispatched = sum(o.success_count for o in outcomes)
        summary.failed = sum(o.failure_count for o in outcomes)

        logger.info(
            f"Scheduled dispatch pass: {summary.due} due, {summary.dispatched} dispatched, "
            f"{summary.failed} failed, {len(summary.upcoming_ids)} upcoming"
        )
        return summary

    async def run_forever(self, interval_seconds: int) -> None:
        """Run passes every ``interval_seconds`` until cancelled."""
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception("Scheduled dispatch pass failed: %s", e)
            await asyncio.sleep(interval_seconds)
