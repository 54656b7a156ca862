"""Database functions for marksheets.

This module provides the storage side of the workflow: fetching candidate
marksheets by department/staff/examination/status, loading one marksheet,
and persisting the result of a confirmed transition. Store errors are raised
as ``TransientError`` and retried with backoff.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from marksheet_dispatch.errors import MarksheetNotFound, TransientError
from marksheet_dispatch.models.marksheet import Marksheet, MarksheetFilter
from marksheet_dispatch.utils.retry import retry_with_backoff

TABLE = "marksheets"


@retry_with_backoff()
async def fetch_eligible_marksheets(
    client: Client,
    marksheet_filter: MarksheetFilter,
) -> List[Marksheet]:
    """List marksheets matching a filter, newest first.

    Args:
        client: Supabase client instance
        marksheet_filter: Department, staff, examination, year and status filters

    Returns:
        List[Marksheet]: Matching marksheets (at most ``marksheet_filter.limit``)

    Raises:
        TransientError: If the database query fails
        ValidationError: If a stored record is malformed
    """
    try:
        query = client.table(TABLE).select("*")

        if marksheet_filter.department:
            query = query.eq("studentDetails->>department", marksheet_filter.department)
        if marksheet_filter.staff_id:
            query = query.eq("staffId", marksheet_filter.staff_id)
        if marksheet_filter.examination_id:
            query = query.eq("examinationId", marksheet_filter.examination_id)
        if marksheet_filter.examination_name:
            query = query.eq("examinationName", marksheet_filter.examination_name)
        if marksheet_filter.year:
            query = query.eq("studentDetails->>year", marksheet_filter.year)
        if len(marksheet_filter.statuses) == 1:
            query = query.eq("status", marksheet_filter.statuses[0])
        elif marksheet_filter.statuses:
            query = query.in_("status", list(marksheet_filter.statuses))

        response = await asyncio.to_thread(
            lambda: query.order("createdAt", desc=True).limit(marksheet_filter.limit).execute()
        )
        rows: List[Dict[str, Any]] = response.data if response.data else []
    except Exception as e:
        raise TransientError(f"Failed to list marksheets: {str(e)}") from e

    return [Marksheet.from_record(row) for row in rows]


@retry_with_backoff()
async def get_marksheet(client: Client, marksheet_id: str) -> Optional[Marksheet]:
    """Retrieve a marksheet by ID.

    Returns:
        Optional[Marksheet]: The marksheet, or None if not found

    Raises:
        TransientError: If the database query fails
    """
    try:
        response = await asyncio.to_thread(
            lambda: client.table(TABLE).select("*").eq("id", marksheet_id).execute()
        )
    except Exception as e:
        raise TransientError(f"Failed to retrieve marksheet: {str(e)}") from e

    if not response.data:
        return None
    return Marksheet.from_record(response.data[0])


@retry_with_backoff()
async def save_marksheet(client: Client, marksheet: Marksheet) -> Marksheet:
    """Persist a marksheet's current state and return the stored copy.

    Raises:
        MarksheetNotFound: If no row has this ID
        TransientError: If the database update fails
    """
    update_data = marksheet.to_record()
    update_data.pop("id")
    update_data["updatedAt"] = update_data["updatedAt"] or datetime.now(timezone.utc).isoformat()

    try:
        response = await asyncio.to_thread(
            lambda: client.table(TABLE).update(update_data).eq("id", marksheet.id).execute()
        )
    except Exception as e:
        raise TransientError(f"Failed to update marksheet: {str(e)}") from e

    if not response.data:
        raise MarksheetNotFound(f"Marksheet not found: {marksheet.id}")
    return Marksheet.from_record(response.data[0])


@retry_with_backoff()
async def set_visited(client: Client, marksheet_id: str, visited: bool) -> None:
    """Update the 'visited' flag only.

    Raises:
        MarksheetNotFound: If no row has this ID
        TransientError: If the database update fails
    """
    update_data = {
        "visited": visited,
        "visitedAt": datetime.now(timezone.utc).isoformat() if visited else None,
    }
    try:
        response = await asyncio.to_thread(
            lambda: client.table(TABLE).update(update_data).eq("id", marksheet_id).execute()
        )
    except Exception as e:
        raise TransientError(f"Failed to update visited flag: {str(e)}") from e

    if not response.data:
        raise MarksheetNotFound(f"Marksheet not found: {marksheet_id}")


class SupabaseMarksheetStore:
    """Marksheet store backed by the ``marksheets`` table."""

    def __init__(self, client: Client):
        self.client = client

    async def fetch_eligible_marksheets(self, marksheet_filter: MarksheetFilter) -> List[Marksheet]:
        return await fetch_eligible_marksheets(self.client, marksheet_filter)

    async def get_marksheet(self, marksheet_id: str) -> Optional[Marksheet]:
        return await get_marksheet(self.client, marksheet_id)

    async def save_marksheet(self, marksheet: Marksheet) -> Marksheet:
        return await save_marksheet(self.client, marksheet)

    async def set_visited(self, marksheet_id: str, visited: bool) -> None:
        await set_visited(self.client, marksheet_id, visited)
