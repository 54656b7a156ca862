"""Examinations API: list, create, per-examination status statistics."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from supabase import Client

from marksheet_dispatch.db.examinations import create_examination, list_examinations
from marksheet_dispatch.db.supabase_client import get_supabase_client
from marksheet_dispatch.dependencies import get_profile_fetcher, get_store, http_error, load_actor
from marksheet_dispatch.errors import WorkflowError
from marksheet_dispatch.middleware.rate_limit import RATE_LIMITS, get_limiter
from marksheet_dispatch.models.examination import ExaminationCreate
from marksheet_dispatch.models.marksheet import MarksheetFilter
from marksheet_dispatch.services.examination_grouping import examination_stats
from marksheet_dispatch.services.signature_gate import ProfileFetcher
from marksheet_dispatch.services.transition_service import MarksheetStore

router = APIRouter(prefix="/api/examinations", tags=["examinations"])
limiter = get_limiter()


@router.get("", response_model=None)
@limiter.limit(RATE_LIMITS["reads"])  # type: ignore[untyped-decorator]
async def list_examinations_endpoint(
    request: Request,
    staff_id: Optional[str] = Query(None),
    department: Optional[str] = Query(None),
    client: Client = Depends(get_supabase_client),
) -> dict:
    """List examinations, newest first."""
    try:
        examinations = await list_examinations(client, staff_id=staff_id, department=department)
    except WorkflowError as e:
        raise http_error(e) from e
    return {
        "items": [e.model_dump(mode="json") for e in examinations],
        "total": len(examinations),
    }


@router.post("", status_code=status.HTTP_201_CREATED, response_model=None)
@limiter.limit(RATE_LIMITS["transitions"])  # type: ignore[untyped-decorator]
async def create_examination_endpoint(
    request: Request,
    body: ExaminationCreate,
    fetch_profile: ProfileFetcher = Depends(get_profile_fetcher),
    client: Client = Depends(get_supabase_client),
) -> dict:
    """Create an examination. Department and staff name come from the staff profile."""
    staff = await load_actor(fetch_profile, body.staff_id)
    try:
        examination = await create_examination(client, body, staff)
    except WorkflowError as e:
        raise http_error(e) from e
    return examination.model_dump(mode="json")


@router.get("/stats", response_model=None)
@limiter.limit(RATE_LIMITS["reads"])  # type: ignore[untyped-decorator]
async def examination_stats_endpoint(
    request: Request,
    department: Optional[str] = Query(None),
    staff_id: Optional[str] = Query(None),
    store: MarksheetStore = Depends(get_store),
) -> dict:
    """Status counts per examination name."""
    try:
        marksheets = await store.fetch_eligible_marksheets(
            MarksheetFilter(department=department, staff_id=staff_id, limit=1000)
        )
    except WorkflowError as e:
        raise http_error(e) from e
    return {name: stats.model_dump() for name, stats in examination_stats(marksheets).items()}
