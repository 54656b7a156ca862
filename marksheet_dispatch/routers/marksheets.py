"""Marksheets API: listing, single transitions, bulk HOD responses, staff edits."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from marksheet_dispatch.dependencies import (
    get_bulk_coordinator,
    get_profile_fetcher,
    get_store,
    get_transition_service,
    http_error,
    load_actor,
)
from marksheet_dispatch.errors import WorkflowError
from marksheet_dispatch.middleware.rate_limit import RATE_LIMITS, get_limiter
from marksheet_dispatch.models.marksheet import MarksheetFilter, MarksheetStatus
from marksheet_dispatch.models.requests import (
    ActorRequest,
    BulkHodResponseRequest,
    EditMarksheetRequest,
    HodResponseRequest,
    VisitedRequest,
)
from marksheet_dispatch.services import workflow
from marksheet_dispatch.services.bulk_coordinator import BulkOperationCoordinator
from marksheet_dispatch.services.examination_grouping import (
    ALL_EXAMINATIONS,
    filter_marksheets,
    group_by_examination,
)
from marksheet_dispatch.services.signature_gate import ProfileFetcher
from marksheet_dispatch.services.transition_service import (
    MarksheetStore,
    TransitionAction,
    TransitionPayload,
    TransitionResult,
    TransitionService,
)

router = APIRouter(prefix="/api/marksheets", tags=["marksheets"])
limiter = get_limiter()


def _result_to_dict(result: TransitionResult) -> Dict[str, Any]:
    return {
        "marksheet_id": result.marksheet_id,
        "success": result.success,
        "marksheet": result.marksheet.to_record() if result.marksheet else None,
        "error": result.error.model_dump() if result.error else None,
    }


def _transition_response(result: TransitionResult, action: TransitionAction, response: Response) -> Dict[str, Any]:
    """Return the stored marksheet, or raise the mapped HTTP error."""
    headers = {
        "X-Workflow-Action": action.value,
        "X-Workflow-Outcome": "success" if result.success else result.error.code,
    }
    if not result.success:
        exc = http_error(result.error)
        exc.headers = headers
        raise exc
    response.headers.update(headers)
    return {"marksheet": result.marksheet.to_record()}


@router.get("", response_model=None)
@limiter.limit(RATE_LIMITS["reads"])  # type: ignore[untyped-decorator]
async def list_marksheets_endpoint(
    request: Request,
    department: Optional[str] = Query(None),
    staff_id: Optional[str] = Query(None),
    examination_id: Optional[str] = Query(None),
    examination: str = Query(ALL_EXAMINATIONS, description="Examination name or 'all'"),
    year: Optional[str] = Query(None),
    statuses: Optional[List[MarksheetStatus]] = Query(None, alias="status"),
    search: Optional[str] = Query(None, description="Student name or registration number"),
    limit: int = Query(500, ge=1, le=1000),
    store: MarksheetStore = Depends(get_store),
) -> dict:
    """List marksheets, sorted by registration number within the selection."""
    marksheet_filter = MarksheetFilter(
        department=department,
        staff_id=staff_id,
        examination_id=examination_id,
        year=year,
        statuses=statuses or [],
        limit=limit,
    )
    try:
        marksheets = await store.fetch_eligible_marksheets(marksheet_filter)
    except WorkflowError as e:
        raise http_error(e) from e

    items = filter_marksheets(marksheets, examination=examination, search=search)
    return {
        "items": [m.to_record() for m in items],
        "total": len(items),
        "examinations": sorted(group_by_examination(marksheets)),
    }


@router.post("/bulk/hod-response", response_model=None)
@limiter.limit(RATE_LIMITS["bulk"])  # type: ignore[untyped-decorator]
async def bulk_hod_response_endpoint(
    request: Request,
    body: BulkHodResponseRequest,
    fetch_profile: ProfileFetcher = Depends(get_profile_fetcher),
    coordinator: BulkOperationCoordinator = Depends(get_bulk_coordinator),
) -> dict:
    """
    Apply one HOD response to many marksheets.

    Every id is attempted; the response lists each outcome. Returns 428 only
    when the HOD has no signature, in which case nothing was attempted.
    """
    actor = await load_actor(fetch_profile, body.actor_id)
    outcome = await coordinator.hod_respond_all(
        body.marksheet_ids,
        body.response,
        actor,
        comments=body.comments,
        scheduled_dispatch_date=body.scheduled_dispatch_date,
    )
    if outcome.blocking_error is not None:
        raise http_error(outcome.blocking_error)

    return {
        "action": outcome.action,
        "success_count": outcome.success_count,
        "failure_count": outcome.failure_count,
        "success_message": outcome.success_message(),
        "failure_message": outcome.failure_message(),
        "results": [_result_to_dict(r) for r in outcome.results],
    }


@router.get("/{marksheet_id}", response_model=None)
@limiter.limit(RATE_LIMITS["reads"])  # type: ignore[untyped-decorator]
async def get_marksheet_endpoint(
    request: Request,
    marksheet_id: str,
    store: MarksheetStore = Depends(get_store),
) -> dict:
    try:
        marksheet = await store.get_marksheet(marksheet_id)
    except WorkflowError as e:
        raise http_error(e) from e
    if marksheet is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "not_found", "message": "Marksheet not found", "field": None},
        )
    return {"marksheet": marksheet.to_record()}


@router.post("/{marksheet_id}/verify", response_model=None)
@limiter.limit(RATE_LIMITS["transitions"])  # type: ignore[untyped-decorator]
async def verify_endpoint(
    request: Request,
    response: Response,
    marksheet_id: str,
    body: ActorRequest,
    fetch_profile: ProfileFetcher = Depends(get_profile_fetcher),
    service: TransitionService = Depends(get_transition_service),
) -> dict:
    """Staff verification: draft -> verified_by_staff (signature required)."""
    actor = await load_actor(fetch_profile, body.actor_id)
    result = await service.apply_transition(marksheet_id, TransitionAction.VERIFY, None, actor)
    return _transition_response(result, TransitionAction.VERIFY, response)


@router.post("/{marksheet_id}/request-dispatch", response_model=None)
@limiter.limit(RATE_LIMITS["transitions"])  # type: ignore[untyped-decorator]
async def request_dispatch_endpoint(
    request: Request,
    response: Response,
    marksheet_id: str,
    body: ActorRequest,
    fetch_profile: ProfileFetcher = Depends(get_profile_fetcher),
    service: TransitionService = Depends(get_transition_service),
) -> dict:
    """Ask the department HOD to approve dispatch."""
    actor = await load_actor(fetch_profile, body.actor_id)
    result = await service.apply_transition(marksheet_id, TransitionAction.REQUEST_DISPATCH, None, actor)
    return _transition_response(result, TransitionAction.REQUEST_DISPATCH, response)


@router.post("/{marksheet_id}/hod-response", response_model=None)
@limiter.limit(RATE_LIMITS["transitions"])  # type: ignore[untyped-decorator]
async def hod_response_endpoint(
    request: Request,
    response: Response,
    marksheet_id: str,
    body: HodResponseRequest,
    fetch_profile: ProfileFetcher = Depends(get_profile_fetcher),
    service: TransitionService = Depends(get_transition_service),
) -> dict:
    """Approve, reject or reschedule a pending dispatch request."""
    actor = await load_actor(fetch_profile, body.actor_id)
    payload = TransitionPayload(
        response=body.response,
        comments=body.comments,
        scheduled_dispatch_date=body.scheduled_dispatch_date,
    )
    result = await service.apply_transition(marksheet_id, TransitionAction.HOD_RESPOND, payload, actor)
    return _transition_response(result, TransitionAction.HOD_RESPOND, response)


@router.post("/{marksheet_id}/dispatch", response_model=None)
@limiter.limit(RATE_LIMITS["dispatch"])  # type: ignore[untyped-decorator]
async def dispatch_endpoint(
    request: Request,
    response: Response,
    marksheet_id: str,
    body: ActorRequest,
    fetch_profile: ProfileFetcher = Depends(get_profile_fetcher),
    service: TransitionService = Depends(get_transition_service),
) -> dict:
    """Deliver an approved marksheet to the parent. Re-sending is allowed."""
    actor = await load_actor(fetch_profile, body.actor_id)
    result = await service.apply_transition(marksheet_id, TransitionAction.SEND_DISPATCH, None, actor)
    return _transition_response(result, TransitionAction.SEND_DISPATCH, response)


@router.patch("/{marksheet_id}", response_model=None)
@limiter.limit(RATE_LIMITS["transitions"])  # type: ignore[untyped-decorator]
async def edit_marksheet_endpoint(
    request: Request,
    marksheet_id: str,
    body: EditMarksheetRequest,
    fetch_profile: ProfileFetcher = Depends(get_profile_fetcher),
    store: MarksheetStore = Depends(get_store),
) -> dict:
    """Staff correction. Changing subjects sends the marksheet back to draft."""
    actor = await load_actor(fetch_profile, body.actor_id)
    try:
        marksheet = await store.get_marksheet(marksheet_id)
        if marksheet is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "not_found", "message": "Marksheet not found", "field": None},
            )
        edited = workflow.edit_marksheet(
            marksheet,
            actor,
            student_details=body.student_details,
            subjects=body.subjects,
        )
        stored = await store.save_marksheet(edited)
    except WorkflowError as e:
        raise http_error(e) from e
    return {"marksheet": stored.to_record()}


@router.put("/{marksheet_id}/visited", response_model=None)
@limiter.limit(RATE_LIMITS["transitions"])  # type: ignore[untyped-decorator]
async def set_visited_endpoint(
    request: Request,
    marksheet_id: str,
    body: VisitedRequest,
    store: MarksheetStore = Depends(get_store),
) -> dict:
    """Persist the 'visited' flag (callers update it optimistically)."""
    try:
        await store.set_visited(marksheet_id, body.visited)
    except WorkflowError as e:
        raise http_error(e) from e
    return {"id": marksheet_id, "visited": body.visited}
