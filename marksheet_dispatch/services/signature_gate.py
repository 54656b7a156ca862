"""Signature precondition for binding actions (verify, HOD responses)."""

import logging
from typing import Awaitable, Callable, Dict, Optional

from marksheet_dispatch.errors import SignatureMissing
from marksheet_dispatch.models.actor import Actor

logger = logging.getLogger(__name__)

ProfileFetcher = Callable[[str], Awaitable[Optional[Actor]]]


class SignatureGate:
    """Blocks binding actions until the actor has a registered signature.

    The actor passed in may be a stale local copy. When it has no signature
    the gate performs one profile lookup; a signature found there is cached
    so later checks for the same actor in this session cost nothing.
    Transient lookup errors propagate unchanged.
    """

    def __init__(self, fetch_profile: ProfileFetcher):
        self._fetch_profile = fetch_profile
        self._cache: Dict[str, Actor] = {}

    def cached(self, actor_id: str) -> Optional[Actor]:
        return self._cache.get(actor_id)

    async def ensure_signature(self, actor: Actor) -> Actor:
        """Return an actor that has a signature, or raise ``SignatureMissing``."""
        if actor.has_signature:
            return actor

        cached = self._cache.get(actor.id)
        if cached is not None:
            return cached

        profile = await self._fetch_profile(actor.id)
        if profile is not None and profile.has_signature:
            refreshed = actor.model_copy(update={"e_signature": profile.e_signature})
            self._cache[actor.id] = refreshed
            logger.info(f"Refreshed signature for actor {actor.id}")
            return refreshed

        logger.warning(f"Actor {actor.id} has no signature on file")
        raise SignatureMissing(
            "Signature missing. Add your signature in Settings before "
            "verifying, approving, rejecting or rescheduling.",
            field="eSignature",
        )
