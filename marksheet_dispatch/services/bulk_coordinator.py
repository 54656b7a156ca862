"""
Bulk workflow actions.

Applies one transition to many marksheets at once: one independent request
per candidate, all fired concurrently, all awaited. A failing candidate never
aborts or rolls back the others; each outcome is reported per item.

Candidates are NOT pre-filtered by status here. Ineligible records are
attempted and come back as per-item ``illegal_transition`` failures, so a
re-run over already-processed marksheets is visible rather than a silent
no-op.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from marksheet_dispatch.errors import TransientError, WorkflowError
from marksheet_dispatch.models.actor import Actor
from marksheet_dispatch.models.marksheet import Marksheet
from marksheet_dispatch.services.signature_gate import SignatureGate
from marksheet_dispatch.services.transition_service import (
    SIGNATURE_ACTIONS,
    ErrorDetail,
    TransitionAction,
    TransitionPayload,
    TransitionResult,
    error_detail,
)

logger = logging.getLogger(__name__)

ApplyTransition = Callable[
    [str, TransitionAction, Optional[TransitionPayload], Actor],
    Awaitable[TransitionResult],
]

_PAST_TENSE = {
    TransitionAction.VERIFY: "verified",
    TransitionAction.REQUEST_DISPATCH: "requested dispatch for",
    TransitionAction.SEND_DISPATCH: "dispatched",
}


class BulkOutcome(BaseModel):
    """Aggregated result of one bulk action."""
    action: str
    label: str = Field(description="Human label, e.g. 'approved' or 'rescheduled'")
    success_count: int = Field(ge=0, default=0)
    failure_count: int = Field(ge=0, default=0)
    results: List[TransitionResult] = Field(default_factory=list)
    blocking_error: Optional[ErrorDetail] = Field(
        default=None,
        description="Set when nothing was attempted (e.g. missing signature)",
    )

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> List[TransitionResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> List[TransitionResult]:
        return [r for r in self.results if not r.success]

    def success_message(self) -> Optional[str]:
        if self.success_count == 0:
            return None
        plural = "s" if self.success_count > 1 else ""
        return f"Successfully {self.label} {self.success_count} request{plural}."

    def failure_message(self) -> Optional[str]:
        if self.blocking_error is not None:
            return self.blocking_error.message
        if self.failure_count == 0:
            return None
        plural = "s" if self.failure_count > 1 else ""
        return f"{self.failure_count} request{plural} failed."


class BulkOperationCoordinator:
    """Fans one transition out over a candidate set.

    Args:
        apply_transition: Single-item entry point (``TransitionService.apply_transition``)
        signature_gate: Checked once up front for signature-bound actions
        concurrency_limit: Max in-flight items; 0/None fans out everything at once
    """

    def __init__(
        self,
        apply_transition: ApplyTransition,
        signature_gate: Optional[SignatureGate] = None,
        concurrency_limit: Optional[int] = None,
    ):
        self.apply_transition = apply_transition
        self.signature_gate = signature_gate
        self.concurrency_limit = concurrency_limit or None

    async def run(
        self,
        candidates: Sequence[Union[Marksheet, str]],
        action: TransitionAction,
        actor: Actor,
        payload: Optional[TransitionPayload] = None,
        label: Optional[str] = None,
    ) -> BulkOutcome:
        """Apply ``action`` to every candidate and wait for all outcomes."""
        action = TransitionAction(action)
        label = label or _PAST_TENSE.get(action, action.value)
        ids = [c.id if isinstance(c, Marksheet) else c for c in candidates]

        if self.signature_gate is not None and action in SIGNATURE_ACTIONS:
            try:
                actor = await self.signature_gate.ensure_signature(actor)
            except WorkflowError as e:
                logger.warning(f"Bulk {label} blocked for actor {actor.id}: {e.message}")
                return BulkOutcome(action=action.value, label=label, blocking_error=error_detail(e))

        semaphore = asyncio.Semaphore(self.concurrency_limit) if self.concurrency_limit else None

        async def run_one(marksheet_id: str) -> TransitionResult:
            if semaphore is None:
                return await self.apply_transition(marksheet_id, action, payload, actor)
            async with semaphore:
                return await self.apply_transition(marksheet_id, action, payload, actor)

        logger.info(f"Bulk {label}: {len(ids)} marksheets (limit={self.concurrency_limit or 'none'})")
        gathered = await asyncio.gather(*(run_one(i) for i in ids), return_exceptions=True)

        results: List[TransitionResult] = []
        for marksheet_id, result in zip(ids, gathered):
            if isinstance(result, BaseException):
                # apply_transition reports failures itself; anything raised is I/O.
                error = result if isinstance(result, WorkflowError) else TransientError(str(result))
                result = TransitionResult(
                    marksheet_id=marksheet_id, success=False, error=error_detail(error)
                )
            results.append(result)

        outcome = BulkOutcome(
            action=action.value,
            label=label,
            success_count=sum(1 for r in results if r.success),
            failure_count=sum(1 for r in results if not r.success),
            results=results,
        )
        for failed in outcome.failed:
            logger.warning(
                f"Bulk {label}: marksheet {failed.marksheet_id} failed "
                f"[{failed.error.code if failed.error else 'unknown'}]"
            )
        logger.info(
            f"Bulk {label} done: {outcome.success_count}/{outcome.total} succeeded, "
            f"{outcome.failure_count} failed"
        )
        return outcome

    async def hod_respond_all(
        self,
        candidates: Sequence[Union[Marksheet, str]],
        response: str,
        actor: Actor,
        comments: Optional[str] = None,
        scheduled_dispatch_date: Optional[str] = None,
    ) -> BulkOutcome:
        """Approve, reject, or reschedule every candidate with one shared payload."""
        payload = TransitionPayload(
            response=response,
            comments=comments,
            scheduled_dispatch_date=scheduled_dispatch_date,
        )
        return await self.run(
            candidates,
            TransitionAction.HOD_RESPOND,
            actor,
            payload=payload,
            label=(response or "").strip().lower() or "responded to",
        )
