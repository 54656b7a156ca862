"""Tests for the signature precondition."""

from unittest.mock import AsyncMock

import pytest

from marksheet_dispatch.errors import SignatureMissing, TransientError
from marksheet_dispatch.services.signature_gate import SignatureGate


@pytest.mark.asyncio
async def test_signed_actor_passes_without_lookup(staff):
    fetch = AsyncMock()
    gate = SignatureGate(fetch)

    assert await gate.ensure_signature(staff) is staff
    fetch.assert_not_called()


@pytest.mark.asyncio
async def test_stale_actor_refreshed_from_profile(unsigned_staff, staff):
    fetch = AsyncMock(return_value=staff)
    gate = SignatureGate(fetch)

    refreshed = await gate.ensure_signature(unsigned_staff)

    assert refreshed.has_signature
    assert refreshed.id == unsigned_staff.id
    fetch.assert_awaited_once_with("staff-1")


@pytest.mark.asyncio
async def test_refreshed_signature_is_cached(unsigned_staff, staff):
    fetch = AsyncMock(return_value=staff)
    gate = SignatureGate(fetch)

    await gate.ensure_signature(unsigned_staff)
    await gate.ensure_signature(unsigned_staff)

    assert fetch.await_count == 1
    assert gate.cached("staff-1").has_signature


@pytest.mark.asyncio
async def test_no_signature_in_profile(unsigned_hod):
    gate = SignatureGate(AsyncMock(return_value=unsigned_hod))

    with pytest.raises(SignatureMissing) as exc_info:
        await gate.ensure_signature(unsigned_hod)

    assert exc_info.value.code == "signature_missing"
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_unknown_profile(unsigned_hod):
    gate = SignatureGate(AsyncMock(return_value=None))

    with pytest.raises(SignatureMissing):
        await gate.ensure_signature(unsigned_hod)


@pytest.mark.asyncio
async def test_lookup_failure_propagates(unsigned_hod):
    gate = SignatureGate(AsyncMock(side_effect=TransientError("connection reset")))

    with pytest.raises(TransientError):
        await gate.ensure_signature(unsigned_hod)
    assert gate.cached("hod-1") is None
