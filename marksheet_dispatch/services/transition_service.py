"""Single-marksheet transition entry point.

``TransitionService.apply_transition`` loads a marksheet, runs the signature
gate for binding actions, applies the pure workflow transition, performs the
external delivery for ``send_dispatch``, and persists the confirmed result.
Every failure comes back as a ``TransitionResult`` with ``success=False``;
nothing is raised across this boundary.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Protocol, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from marksheet_dispatch.errors import (
    DeliveryFailure,
    MarksheetNotFound,
    TransientError,
    WorkflowError,
)
from marksheet_dispatch.models.actor import Actor
from marksheet_dispatch.models.marksheet import Marksheet, MarksheetFilter
from marksheet_dispatch.services import workflow
from marksheet_dispatch.services.delivery import DeliveryResult
from marksheet_dispatch.services.signature_gate import SignatureGate

logger = logging.getLogger(__name__)


class TransitionAction(str, Enum):
    VERIFY = "verify"
    REQUEST_DISPATCH = "request_dispatch"
    HOD_RESPOND = "hod_respond"
    SEND_DISPATCH = "send_dispatch"


SIGNATURE_ACTIONS = frozenset({TransitionAction.VERIFY, TransitionAction.HOD_RESPOND})


class TransitionPayload(BaseModel):
    """Shared action input. Only ``hod_respond`` reads these fields."""
    response: Optional[str] = None
    comments: Optional[str] = None
    scheduled_dispatch_date: Optional[Union[datetime, str]] = None


class ErrorDetail(BaseModel):
    code: str
    message: str
    field: Optional[str] = None


class TransitionResult(BaseModel):
    marksheet_id: str
    success: bool
    marksheet: Optional[Marksheet] = None
    error: Optional[ErrorDetail] = None


class MarksheetStore(Protocol):
    async def fetch_eligible_marksheets(self, marksheet_filter: MarksheetFilter) -> List[Marksheet]: ...

    async def get_marksheet(self, marksheet_id: str) -> Optional[Marksheet]: ...

    async def save_marksheet(self, marksheet: Marksheet) -> Marksheet: ...

    async def set_visited(self, marksheet_id: str, visited: bool) -> None: ...


class DeliveryChannel(Protocol):
    async def send(self, marksheet: Marksheet) -> DeliveryResult: ...


def error_detail(error: WorkflowError) -> ErrorDetail:
    return ErrorDetail(code=error.code, message=error.message, field=error.field)


class TransitionService:
    """Applies one workflow action to one marksheet against the store."""

    def __init__(
        self,
        store: MarksheetStore,
        signature_gate: SignatureGate,
        delivery: DeliveryChannel,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.signature_gate = signature_gate
        self.delivery = delivery
        self.clock = clock

    async def apply_transition(
        self,
        marksheet_id: str,
        action: Union[TransitionAction, str],
        payload: Optional[TransitionPayload],
        actor: Actor,
    ) -> TransitionResult:
        """Apply ``action`` to one marksheet on behalf of ``actor``.

        Returns:
            TransitionResult: the stored marksheet on success, otherwise the
            error code, message and offending field
        """
        payload = payload or TransitionPayload()
        try:
            action = TransitionAction(action)
        except ValueError:
            return TransitionResult(
                marksheet_id=marksheet_id,
                success=False,
                error=ErrorDetail(code="validation_error", message=f"Unknown action: {action}", field="action"),
            )

        try:
            marksheet = await self._load(marksheet_id)
            if action in SIGNATURE_ACTIONS:
                actor = await self.signature_gate.ensure_signature(actor)
            updated = await self._apply(marksheet, action, payload, actor)
            stored = await self.store.save_marksheet(updated)
        except WorkflowError as e:
            logger.warning(f"{action.value} on marksheet {marksheet_id} failed: [{e.code}] {e.message}")
            return TransitionResult(marksheet_id=marksheet_id, success=False, error=error_detail(e))
        except PydanticValidationError as e:
            logger.warning(f"{action.value} on marksheet {marksheet_id} produced an invalid record: {e}")
            return TransitionResult(
                marksheet_id=marksheet_id,
                success=False,
                error=ErrorDetail(code="validation_error", message=str(e)),
            )
        return TransitionResult(marksheet_id=marksheet_id, success=True, marksheet=stored)

    async def _load(self, marksheet_id: str) -> Marksheet:
        marksheet = await self.store.get_marksheet(marksheet_id)
        if marksheet is None:
            raise MarksheetNotFound(f"Marksheet not found: {marksheet_id}")
        return marksheet

    async def _apply(
        self,
        marksheet: Marksheet,
        action: TransitionAction,
        payload: TransitionPayload,
        actor: Actor,
    ) -> Marksheet:
        now = self.clock()
        if action is TransitionAction.VERIFY:
            return workflow.verify(marksheet, actor, now=now)
        if action is TransitionAction.REQUEST_DISPATCH:
            return workflow.request_dispatch(marksheet, actor, now=now)
        if action is TransitionAction.HOD_RESPOND:
            return workflow.hod_respond(
                marksheet,
                actor,
                payload.response or "",
                comments=payload.comments,
                scheduled_dispatch_date=payload.scheduled_dispatch_date,
                now=now,
            )
        return await self._send_dispatch(marksheet, actor, now)

    async def _send_dispatch(self, marksheet: Marksheet, actor: Actor, now: datetime) -> Marksheet:
        workflow.check_can_send_dispatch(marksheet, actor)
        try:
            result = await self.delivery.send(marksheet)
        except Exception as e:
            raise TransientError(f"Delivery channel unreachable: {str(e)}") from e

        if not result.success:
            error = result.error or "Unknown delivery error"
            await self.store.save_marksheet(workflow.record_delivery_failure(marksheet, error, now=now))
            raise DeliveryFailure(f"Delivery failed for marksheet {marksheet.id}: {error}")
        return workflow.mark_dispatched(marksheet, actor, now=now)
