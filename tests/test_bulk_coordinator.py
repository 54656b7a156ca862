"""Tests for bulk workflow actions."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from marksheet_dispatch.services.bulk_coordinator import BulkOperationCoordinator, BulkOutcome
from marksheet_dispatch.services.signature_gate import SignatureGate
from marksheet_dispatch.services.transition_service import (
    ErrorDetail,
    TransitionAction,
    TransitionResult,
    TransitionService,
)


@pytest.fixture
def hod_queue(make_marksheet):
    """Four pending requests and one draft that is not eligible for an HOD response."""
    marksheets = [
        make_marksheet(f"ms-{i}", status="dispatch_requested", reg_number=f"21CS00{i}")
        for i in range(1, 5)
    ]
    marksheets.append(make_marksheet("ms-5", status="draft", reg_number="21CS005"))
    return marksheets


@pytest.fixture
def wired(store_factory, fetch_profile, delivery, hod_queue):
    store = store_factory(hod_queue)
    gate = SignatureGate(fetch_profile)
    service = TransitionService(store, gate, delivery)
    return BulkOperationCoordinator(service.apply_transition, signature_gate=gate), store


@pytest.mark.asyncio
async def test_partial_failure_is_reported_per_item(wired, hod_queue, hod):
    coordinator, store = wired

    outcome = await coordinator.hod_respond_all(hod_queue, "approved", hod)

    assert outcome.success_count == 4
    assert outcome.failure_count == 1
    assert outcome.total == 5
    [failed] = outcome.failed
    assert failed.marksheet_id == "ms-5"
    assert failed.error.code == "illegal_transition"
    assert [store.status_of(f"ms-{i}") for i in range(1, 5)] == ["approved_by_hod"] * 4
    assert store.status_of("ms-5") == "draft"


@pytest.mark.asyncio
async def test_messages(wired, hod_queue, hod):
    coordinator, _ = wired

    outcome = await coordinator.hod_respond_all(hod_queue, "Approved", hod)

    assert outcome.label == "approved"
    assert outcome.success_message() == "Successfully approved 4 requests."
    assert outcome.failure_message() == "1 request failed."


@pytest.mark.asyncio
async def test_rerun_reports_already_processed_items(wired, hod_queue, hod):
    coordinator, _ = wired
    await coordinator.hod_respond_all(hod_queue, "approved", hod)

    rerun = await coordinator.hod_respond_all(hod_queue, "approved", hod)

    assert rerun.success_count == 0
    assert rerun.failure_count == 5
    assert rerun.success_message() is None


@pytest.mark.asyncio
async def test_missing_signature_blocks_whole_batch(hod_queue, unsigned_hod):
    apply_transition = AsyncMock()
    gate = SignatureGate(AsyncMock(return_value=unsigned_hod))
    coordinator = BulkOperationCoordinator(apply_transition, signature_gate=gate)

    outcome = await coordinator.hod_respond_all(hod_queue, "rejected", unsigned_hod, comments="Incomplete")

    assert outcome.blocking_error.code == "signature_missing"
    assert outcome.results == []
    assert outcome.failure_message() == outcome.blocking_error.message
    apply_transition.assert_not_called()


@pytest.mark.asyncio
async def test_shared_payload_error_fails_each_item(wired, hod_queue, hod):
    coordinator, store = wired

    outcome = await coordinator.hod_respond_all(hod_queue[:4], "rescheduled", hod)

    assert outcome.blocking_error is None
    assert outcome.failure_count == 4
    assert {r.error.code for r in outcome.results} == {"validation_error"}
    assert store.saved_ids == []


@pytest.mark.asyncio
async def test_reschedule_all(wired, hod_queue, hod):
    coordinator, store = wired

    outcome = await coordinator.hod_respond_all(
        hod_queue[:4], "rescheduled", hod, scheduled_dispatch_date="2025-03-10T09:00:00Z"
    )

    assert outcome.success_count == 4
    assert outcome.success_message() == "Successfully rescheduled 4 requests."
    assert store.records["ms-1"]["dispatchRequest"]["scheduledDispatchDate"].startswith("2025-03-10T09:00:00")


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_item_failure(hod, staff):
    async def apply_transition(marksheet_id, action, payload, actor):
        if marksheet_id == "b":
            raise RuntimeError("socket closed")
        return TransitionResult(marksheet_id=marksheet_id, success=True)

    coordinator = BulkOperationCoordinator(apply_transition)

    outcome = await coordinator.run(["a", "b", "c"], TransitionAction.REQUEST_DISPATCH, staff)

    assert outcome.success_count == 2
    assert outcome.failed[0].marksheet_id == "b"
    assert outcome.failed[0].error.code == "transient_error"


@pytest.mark.asyncio
async def test_items_run_concurrently(staff):
    started = []
    all_started = asyncio.Event()

    async def apply_transition(marksheet_id, action, payload, actor):
        started.append(marksheet_id)
        if len(started) == 3:
            all_started.set()
        await all_started.wait()
        return TransitionResult(marksheet_id=marksheet_id, success=True)

    coordinator = BulkOperationCoordinator(apply_transition)

    outcome = await asyncio.wait_for(
        coordinator.run(["a", "b", "c"], TransitionAction.SEND_DISPATCH, staff), timeout=2
    )

    assert outcome.success_count == 3


@pytest.mark.asyncio
async def test_concurrency_limit(staff):
    in_flight = 0
    peak = 0

    async def apply_transition(marksheet_id, action, payload, actor):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return TransitionResult(marksheet_id=marksheet_id, success=True)

    coordinator = BulkOperationCoordinator(apply_transition, concurrency_limit=2)

    outcome = await coordinator.run([str(i) for i in range(6)], TransitionAction.SEND_DISPATCH, staff)

    assert outcome.success_count == 6
    assert peak == 2


def test_outcome_messages_pluralize():
    outcome = BulkOutcome(
        action="hod_respond",
        label="rejected",
        success_count=1,
        failure_count=2,
        results=[
            TransitionResult(marksheet_id="a", success=True),
            TransitionResult(marksheet_id="b", success=False, error=ErrorDetail(code="x", message="m")),
            TransitionResult(marksheet_id="c", success=False, error=ErrorDetail(code="x", message="m")),
        ],
    )

    assert outcome.success_message() == "Successfully rejected 1 request."
    assert outcome.failure_message() == "2 requests failed."
