"""
Async HTTP client for the marksheet dispatch API.

Keeps a ``LocalMarksheetCache`` in step with the server: listings replace the
cache, transitions update it only from confirmed results, and the visited
flag is toggled optimistically and reverted if the server rejects it.

Usage:
    async with MarksheetApiClient("hod-1", api_url="http://localhost:8000") as api:
        await api.refresh(department="CSE", status=["dispatch_requested"])
        outcome = await api.hod_respond_all(["ms-1", "ms-2"], "approved")
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from marksheet_dispatch.models.marksheet import Marksheet
from marksheet_dispatch.services.bulk_coordinator import BulkOutcome
from marksheet_dispatch.services.local_state import LocalMarksheetCache
from marksheet_dispatch.services.transition_service import (
    ErrorDetail,
    TransitionAction,
    TransitionResult,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:8000"
REQUEST_TIMEOUT = 60.0

_ACTION_PATHS = {
    TransitionAction.VERIFY: "verify",
    TransitionAction.REQUEST_DISPATCH: "request-dispatch",
    TransitionAction.SEND_DISPATCH: "dispatch",
}


def _error_from_response(response: httpx.Response) -> ErrorDetail:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    if isinstance(detail, dict) and "code" in detail:
        return ErrorDetail(
            code=detail["code"],
            message=detail.get("message", ""),
            field=detail.get("field"),
        )
    code = "validation_error" if response.status_code == 422 else "transient_error"
    return ErrorDetail(code=code, message=f"HTTP {response.status_code}: {response.text[:200]}")


def _result_from_dict(data: Dict[str, Any]) -> TransitionResult:
    return TransitionResult(
        marksheet_id=data["marksheet_id"],
        success=data["success"],
        marksheet=Marksheet.from_record(data["marksheet"]) if data.get("marksheet") else None,
        error=ErrorDetail(**data["error"]) if data.get("error") else None,
    )


class MarksheetApiClient:
    """Client acting as one staff member or HOD.

    Args:
        actor_id: Sent as ``actor_id`` on every mutating request
        api_url: Base URL of the API server
        http: Pre-built ``httpx.AsyncClient`` (its base URL is used as is)
    """

    def __init__(
        self,
        actor_id: str,
        api_url: str = DEFAULT_API_URL,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.actor_id = actor_id
        self.cache = LocalMarksheetCache()
        self._http = http or httpx.AsyncClient(base_url=api_url, timeout=REQUEST_TIMEOUT)

    async def __aenter__(self) -> "MarksheetApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def refresh(self, **filters: Any) -> List[Marksheet]:
        """Reload the cache from ``GET /api/marksheets``.

        Raises:
            httpx.HTTPStatusError: If the listing fails
        """
        params = {k: v for k, v in filters.items() if v is not None}
        response = await self._http.get("/api/marksheets", params=params)
        response.raise_for_status()
        self.cache.replace_all(Marksheet.from_record(r) for r in response.json()["items"])
        return self.cache.all()

    async def transition(
        self,
        marksheet_id: str,
        action: Union[TransitionAction, str],
    ) -> TransitionResult:
        """Verify, request dispatch for, or dispatch one marksheet."""
        action = TransitionAction(action)
        if action not in _ACTION_PATHS:
            raise ValueError(f"Use hod_respond for {action.value}")
        response = await self._http.post(
            f"/api/marksheets/{marksheet_id}/{_ACTION_PATHS[action]}",
            json={"actor_id": self.actor_id},
        )
        return self._reconcile_single(marksheet_id, response)

    async def hod_respond(
        self,
        marksheet_id: str,
        response: str,
        comments: Optional[str] = None,
        scheduled_dispatch_date: Optional[Union[datetime, str]] = None,
    ) -> TransitionResult:
        http_response = await self._http.post(
            f"/api/marksheets/{marksheet_id}/hod-response",
            json=self._hod_body(response, comments, scheduled_dispatch_date),
        )
        return self._reconcile_single(marksheet_id, http_response)

    async def hod_respond_all(
        self,
        marksheet_ids: Sequence[str],
        response: str,
        comments: Optional[str] = None,
        scheduled_dispatch_date: Optional[Union[datetime, str]] = None,
    ) -> BulkOutcome:
        """Apply one HOD response to many marksheets in a single request."""
        label = response.strip().lower() or "responded to"
        body = self._hod_body(response, comments, scheduled_dispatch_date)
        body["marksheet_ids"] = list(marksheet_ids)

        http_response = await self._http.post("/api/marksheets/bulk/hod-response", json=body)
        if http_response.is_error:
            error = _error_from_response(http_response)
            logger.warning(f"Bulk {label} rejected by server: [{error.code}] {error.message}")
            return BulkOutcome(
                action=TransitionAction.HOD_RESPOND.value,
                label=label,
                blocking_error=error,
            )

        data = http_response.json()
        outcome = BulkOutcome(
            action=data["action"],
            label=label,
            success_count=data["success_count"],
            failure_count=data["failure_count"],
            results=[_result_from_dict(r) for r in data["results"]],
        )
        self.cache.reconcile(outcome)
        return outcome

    async def set_visited(self, marksheet_id: str, visited: bool) -> bool:
        """Toggle the visited flag optimistically.

        Returns:
            bool: True if the server confirmed, False if the flag was reverted
        """
        async def remote(target_id: str, value: bool) -> None:
            response = await self._http.put(
                f"/api/marksheets/{target_id}/visited",
                json={"visited": value},
            )
            response.raise_for_status()

        return await self.cache.set_visited(marksheet_id, visited, remote)

    def _hod_body(
        self,
        response: str,
        comments: Optional[str],
        scheduled_dispatch_date: Optional[Union[datetime, str]],
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"actor_id": self.actor_id, "response": response}
        if comments is not None:
            body["comments"] = comments
        if scheduled_dispatch_date is not None:
            body["scheduled_dispatch_date"] = (
                scheduled_dispatch_date.isoformat()
                if isinstance(scheduled_dispatch_date, datetime)
                else scheduled_dispatch_date
            )
        return body

    def _reconcile_single(self, marksheet_id: str, response: httpx.Response) -> TransitionResult:
        if response.is_error:
            result = TransitionResult(
                marksheet_id=marksheet_id,
                success=False,
                error=_error_from_response(response),
            )
        else:
            result = TransitionResult(
                marksheet_id=marksheet_id,
                success=True,
                marksheet=Marksheet.from_record(response.json()["marksheet"]),
            )
        self.cache.reconcile(result)
        return result
