"""Database functions for actor profiles (staff and HOD users)."""

import asyncio
from typing import Optional

from supabase import Client

from marksheet_dispatch.errors import TransientError
from marksheet_dispatch.models.actor import Actor
from marksheet_dispatch.utils.retry import retry_with_backoff


@retry_with_backoff()
async def fetch_actor_profile(client: Client, actor_id: str) -> Optional[Actor]:
    """Retrieve the current profile of a staff member or HOD.

    Args:
        client: Supabase client instance
        actor_id: User ID

    Returns:
        Optional[Actor]: The profile (with ``e_signature`` when registered), or None

    Raises:
        TransientError: If the database query fails
    """
    try:
        response = await asyncio.to_thread(
            lambda: client.table("users")
            .select("id, role, name, department, eSignature")
            .eq("id", actor_id)
            .execute()
        )
    except Exception as e:
        raise TransientError(f"Failed to retrieve actor profile: {str(e)}") from e

    if not response.data:
        return None
    return Actor.from_record(response.data[0])
