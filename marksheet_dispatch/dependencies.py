"""FastAPI dependencies: store, signature gate, delivery channel, services.

Routes receive collaborators through ``Depends`` so they can be swapped with
``app.dependency_overrides``.
"""

from typing import Any, Dict, Optional, Union

from fastapi import Depends, HTTPException, status

from marksheet_dispatch.config import get_settings
from marksheet_dispatch.db.actors import fetch_actor_profile
from marksheet_dispatch.db.marksheets import SupabaseMarksheetStore
from marksheet_dispatch.db.supabase_client import get_supabase_client
from marksheet_dispatch.errors import WorkflowError
from marksheet_dispatch.models.actor import Actor
from marksheet_dispatch.services.bulk_coordinator import BulkOperationCoordinator
from marksheet_dispatch.services.delivery import HttpDeliveryChannel
from marksheet_dispatch.services.signature_gate import ProfileFetcher, SignatureGate
from marksheet_dispatch.services.transition_service import (
    DeliveryChannel,
    ErrorDetail,
    MarksheetStore,
    TransitionService,
)

HTTP_STATUS_BY_CODE = {
    "illegal_transition": status.HTTP_409_CONFLICT,
    "signature_missing": status.HTTP_428_PRECONDITION_REQUIRED,
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "not_found": status.HTTP_404_NOT_FOUND,
    "delivery_failure": status.HTTP_502_BAD_GATEWAY,
    "transient_error": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(error: Union[WorkflowError, ErrorDetail]) -> HTTPException:
    """Map a workflow error to an HTTPException with a structured detail."""
    detail: Dict[str, Any] = (
        error.to_dict() if isinstance(error, WorkflowError) else error.model_dump()
    )
    return HTTPException(
        status_code=HTTP_STATUS_BY_CODE.get(detail["code"], status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=detail,
    )


def get_store() -> MarksheetStore:
    return SupabaseMarksheetStore(get_supabase_client())


def get_profile_fetcher() -> ProfileFetcher:
    client = get_supabase_client()

    async def fetch(actor_id: str) -> Optional[Actor]:
        return await fetch_actor_profile(client, actor_id)

    return fetch


def get_delivery_channel() -> DeliveryChannel:
    return HttpDeliveryChannel()


def get_signature_gate(fetch: ProfileFetcher = Depends(get_profile_fetcher)) -> SignatureGate:
    return SignatureGate(fetch)


def get_transition_service(
    store: MarksheetStore = Depends(get_store),
    gate: SignatureGate = Depends(get_signature_gate),
    delivery: DeliveryChannel = Depends(get_delivery_channel),
) -> TransitionService:
    return TransitionService(store, gate, delivery)


def get_bulk_coordinator(
    service: TransitionService = Depends(get_transition_service),
    gate: SignatureGate = Depends(get_signature_gate),
) -> BulkOperationCoordinator:
    return BulkOperationCoordinator(
        service.apply_transition,
        signature_gate=gate,
        concurrency_limit=get_settings().bulk_concurrency_limit,
    )


async def load_actor(fetch: ProfileFetcher, actor_id: str) -> Actor:
    """Load the acting user's profile.

    Raises:
        HTTPException: 404 if the actor does not exist, 503 on lookup failure
    """
    try:
        actor = await fetch(actor_id)
    except WorkflowError as e:
        raise http_error(e) from e
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "not_found", "message": f"Actor not found: {actor_id}", "field": "actor_id"},
        )
    return actor
