"""Marksheet approval workflow.

Pure transition functions: each takes the current marksheet and the acting
``Actor``, checks that the action is legal from the current state for that
actor, and returns a new ``Marksheet`` with the next state. Nothing here
performs I/O; the caller persists the returned marksheet.

Lifecycle::

    draft --verify--> verified_by_staff --request_dispatch--> dispatch_requested
    dispatch_requested | rescheduled_by_hod --hod_respond--> approved_by_hod
                                                           | rejected_by_hod
                                                           | rescheduled_by_hod
    rescheduled_by_hod | rejected_by_hod --request_dispatch--> dispatch_requested
    approved_by_hod | dispatched --send_dispatch--> dispatched

Illegal actions raise ``IllegalTransition`` and leave the input untouched.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from marksheet_dispatch.errors import IllegalTransition, SignatureMissing, ValidationError
from marksheet_dispatch.models.actor import Actor
from marksheet_dispatch.models.marksheet import (
    ApprovedByHod,
    DispatchRequest,
    DispatchRequested,
    Dispatched,
    Draft,
    HodDecision,
    Marksheet,
    RejectedByHod,
    RescheduledByHod,
    StudentDetailsUpdate,
    Subject,
    VerifiedByStaff,
)
from marksheet_dispatch.services.result_deriver import apply_result_normalization
from marksheet_dispatch.utils.normalizers import parse_timestamp

logger = logging.getLogger(__name__)

HOD_RESPONSES = ("approved", "rejected", "rescheduled")

# Source states from which each action is legal
VERIFY_FROM = frozenset({"draft"})
REQUEST_DISPATCH_FROM = frozenset({"verified_by_staff", "rescheduled_by_hod", "rejected_by_hod"})
HOD_RESPOND_FROM = frozenset({"dispatch_requested", "rescheduled_by_hod"})
SEND_DISPATCH_FROM = frozenset({"approved_by_hod", "dispatched"})


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _require_state(marksheet: Marksheet, action: str, allowed: Iterable[str]) -> None:
    if marksheet.status not in allowed:
        raise IllegalTransition(
            f"Cannot {action} marksheet {marksheet.id} in status '{marksheet.status}'"
        )


def _require_owner(marksheet: Marksheet, actor: Actor, action: str) -> None:
    if actor.role != "staff" or actor.id != marksheet.staff_id:
        raise IllegalTransition(
            f"Only the assigned staff member can {action} marksheet {marksheet.id}"
        )


def _require_department_hod(marksheet: Marksheet, actor: Actor) -> None:
    if actor.role != "hod":
        raise IllegalTransition(f"Only an HOD can respond to marksheet {marksheet.id}")
    if actor.department != marksheet.department:
        raise IllegalTransition(
            f"HOD of {actor.department} cannot respond to a {marksheet.department} marksheet"
        )


def _require_signature(actor: Actor) -> None:
    if not actor.has_signature:
        raise SignatureMissing(
            "Add your signature in Settings before verifying or responding to marksheets",
            field="eSignature",
        )


def _transition(marksheet: Marksheet, state: Any, now: datetime, actor: Actor) -> Marksheet:
    logger.info(
        f"Marksheet {marksheet.id}: {marksheet.status} -> {state.status} (actor={actor.id})"
    )
    return marksheet.model_copy(update={"state": state, "updated_at": now})


def verify(marksheet: Marksheet, actor: Actor, now: Optional[datetime] = None) -> Marksheet:
    """Staff owner attests the marks: draft -> verified_by_staff."""
    _require_state(marksheet, "verify", VERIFY_FROM)
    _require_owner(marksheet, actor, "verify")
    _require_signature(actor)
    at = _now(now)
    state = VerifiedByStaff(verified_by=actor.name or actor.id, verified_at=at)
    return _transition(marksheet, state, at, actor)


def request_dispatch(marksheet: Marksheet, actor: Actor, now: Optional[datetime] = None) -> Marksheet:
    """Raise (or re-raise) a dispatch request.

    Any earlier HOD response, comments and scheduled date are dropped so the
    HOD sees a fresh pending request.
    """
    _require_state(marksheet, "request dispatch for", REQUEST_DISPATCH_FROM)
    _require_owner(marksheet, actor, "request dispatch for")
    at = _now(now)
    state = DispatchRequested(
        request=DispatchRequest(requested_at=at, requested_by=actor.name or actor.id)
    )
    return _transition(marksheet, state, at, actor)


def hod_respond(
    marksheet: Marksheet,
    actor: Actor,
    response: str,
    comments: Optional[str] = None,
    scheduled_dispatch_date: Any = None,
    now: Optional[datetime] = None,
) -> Marksheet:
    """Apply an HOD decision: approved, rejected, or rescheduled.

    Rescheduling requires a parseable ``scheduled_dispatch_date``. An
    approval may optionally carry one, which the scheduled dispatch job
    honours. Comments are always optional.

    Raises:
        ValidationError: Unknown response or missing/unparseable date
        IllegalTransition: Wrong state, non-HOD, or other department
        SignatureMissing: HOD has no signature
    """
    normalized = (response or "").strip().lower()
    if normalized not in HOD_RESPONSES:
        raise ValidationError(
            f"Invalid response '{response}'. Must be one of: {', '.join(HOD_RESPONSES)}",
            field="response",
        )
    _require_state(marksheet, f"mark as {normalized}", HOD_RESPOND_FROM)
    _require_department_hod(marksheet, actor)
    _require_signature(actor)

    scheduled: Optional[datetime] = None
    if normalized == "rescheduled" or scheduled_dispatch_date not in (None, ""):
        try:
            scheduled = parse_timestamp(scheduled_dispatch_date)
        except ValueError as e:
            raise ValidationError(
                "scheduledDispatchDate is required and must be a valid timestamp to reschedule"
                if normalized == "rescheduled"
                else f"scheduledDispatchDate is not a valid timestamp: {e}",
                field="scheduledDispatchDate",
            ) from e

    at = _now(now)
    request = marksheet.state.request
    decision = HodDecision(
        hod_id=actor.id,
        hod_name=actor.name,
        comments=comments or None,
        responded_at=at,
    )
    if normalized == "approved":
        state: Any = ApprovedByHod(request=request, decision=decision, scheduled_dispatch_date=scheduled)
    elif normalized == "rejected":
        state = RejectedByHod(request=request, decision=decision)
    else:
        state = RescheduledByHod(request=request, decision=decision, scheduled_dispatch_date=scheduled)
    return _transition(marksheet, state, at, actor)


def check_can_send_dispatch(marksheet: Marksheet, actor: Actor) -> None:
    """Raise unless ``actor`` may send this marksheet now. Call before delivering."""
    _require_state(marksheet, "dispatch", SEND_DISPATCH_FROM)
    _require_owner(marksheet, actor, "dispatch")


def mark_dispatched(marksheet: Marksheet, actor: Actor, now: Optional[datetime] = None) -> Marksheet:
    """Record a successful delivery: approved_by_hod | dispatched -> dispatched."""
    check_can_send_dispatch(marksheet, actor)
    at = _now(now)
    current = marksheet.state
    approved_at = current.decision.responded_at if isinstance(current, ApprovedByHod) else current.approved_at
    state = Dispatched(request=current.request, approved_at=approved_at, dispatched_at=at)
    return _transition(marksheet, state, at, actor)


def record_delivery_failure(marksheet: Marksheet, error: str, now: Optional[datetime] = None) -> Marksheet:
    """Keep the status, note the delivery error so a retry can be offered."""
    if not isinstance(marksheet.state, (ApprovedByHod, Dispatched)):
        raise IllegalTransition(f"Marksheet {marksheet.id} is not awaiting dispatch")
    state = marksheet.state.model_copy(update={"dispatch_error": error})
    return marksheet.model_copy(update={"state": state, "updated_at": _now(now)})


def mark_pre_dispatch_notified(marksheet: Marksheet) -> Marksheet:
    if not isinstance(marksheet.state, ApprovedByHod):
        raise IllegalTransition(f"Marksheet {marksheet.id} has no approved dispatch")
    state = marksheet.state.model_copy(update={"pre_dispatch_notification_sent": True})
    return marksheet.model_copy(update={"state": state})


def edit_marksheet(
    marksheet: Marksheet,
    actor: Actor,
    student_details: Optional[StudentDetailsUpdate] = None,
    subjects: Optional[list[Subject]] = None,
    now: Optional[datetime] = None,
) -> Marksheet:
    """Staff correction of a marksheet.

    New subjects are re-derived and send the marksheet back to draft for
    re-verification. Details are merged field by field and keep the status;
    the department cannot change. Dispatched marksheets can no longer be
    edited.
    """
    if marksheet.status == "dispatched":
        raise IllegalTransition(f"Marksheet {marksheet.id} has already been dispatched")
    _require_owner(marksheet, actor, "edit")
    at = _now(now)
    update: dict[str, Any] = {"updated_at": at}
    if student_details is not None:
        update["student_details"] = student_details.merge_into(marksheet.student_details)
    edited = marksheet.model_copy(update=update)
    if subjects:
        edited = apply_result_normalization(
            edited.model_copy(
                update={"subjects": subjects, "overall_result": None, "overall_grade": None}
            )
        )
        if marksheet.status != "draft":
            edited = _transition(edited, Draft(), at, actor)
    return edited
