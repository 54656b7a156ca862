"""Shared fixtures: environment, actors, marksheet factory, in-memory store."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from marksheet_dispatch.config import get_settings
from marksheet_dispatch.db.supabase_client import reset_supabase_client
from marksheet_dispatch.errors import MarksheetNotFound, TransientError
from marksheet_dispatch.models.actor import Actor
from marksheet_dispatch.models.marksheet import (
    ApprovedByHod,
    DispatchRequest,
    DispatchRequested,
    Dispatched,
    Draft,
    HodDecision,
    Marksheet,
    MarksheetFilter,
    RejectedByHod,
    RescheduledByHod,
    StudentDetails,
    Subject,
    VerifiedByStaff,
)
from marksheet_dispatch.services.delivery import DeliveryResult

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
SIGNATURE = "data:image/png;base64,iVBORw0KGgo="


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    """Minimal valid configuration for every test."""
    monkeypatch.setenv("SUPABASE_URL", "https://test-project.supabase.co")
    monkeypatch.setenv("SUPABASE_KEY", "test-supabase-key")
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.setenv("DELIVERY_ENDPOINT_URL", "https://delivery.example.com/send")
    monkeypatch.setenv("DELIVERY_SIGNING_KEY", "test-signing-key")
    monkeypatch.delenv("BULK_CONCURRENCY_LIMIT", raising=False)
    get_settings.cache_clear()
    reset_supabase_client()
    yield
    get_settings.cache_clear()
    reset_supabase_client()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def staff() -> Actor:
    return Actor(id="staff-1", role="staff", department="CSE", name="Staff One", e_signature=SIGNATURE)


@pytest.fixture
def unsigned_staff() -> Actor:
    return Actor(id="staff-1", role="staff", department="CSE", name="Staff One")


@pytest.fixture
def other_staff() -> Actor:
    return Actor(id="staff-2", role="staff", department="CSE", name="Staff Two", e_signature=SIGNATURE)


@pytest.fixture
def hod() -> Actor:
    return Actor(id="hod-1", role="hod", department="CSE", name="Dr. Rao", e_signature=SIGNATURE)


@pytest.fixture
def unsigned_hod() -> Actor:
    return Actor(id="hod-1", role="hod", department="CSE", name="Dr. Rao")


@pytest.fixture
def other_hod() -> Actor:
    return Actor(id="hod-2", role="hod", department="ECE", name="Dr. Iyer", e_signature=SIGNATURE)


def build_state(status: str, scheduled: Optional[datetime] = None, notified: bool = False):
    request = DispatchRequest(requested_at=NOW, requested_by="Staff One")
    decision = HodDecision(hod_id="hod-1", hod_name="Dr. Rao", responded_at=NOW)
    if status == "draft":
        return Draft()
    if status == "verified_by_staff":
        return VerifiedByStaff(verified_by="Staff One", verified_at=NOW)
    if status == "dispatch_requested":
        return DispatchRequested(request=request)
    if status == "rescheduled_by_hod":
        return RescheduledByHod(
            request=request,
            decision=decision,
            scheduled_dispatch_date=scheduled or NOW + timedelta(days=1),
        )
    if status == "approved_by_hod":
        return ApprovedByHod(
            request=request,
            decision=decision,
            scheduled_dispatch_date=scheduled,
            pre_dispatch_notification_sent=notified,
        )
    if status == "rejected_by_hod":
        return RejectedByHod(request=request, decision=decision)
    if status == "dispatched":
        return Dispatched(request=request, approved_at=NOW, dispatched_at=NOW)
    raise ValueError(status)


@pytest.fixture
def make_marksheet():
    """Factory for marksheets in any status."""

    def factory(
        marksheet_id: str = "ms-1",
        status: str = "draft",
        staff_id: str = "staff-1",
        department: str = "CSE",
        examination_name: Optional[str] = "Model Exam I",
        name: str = "Asha Kumar",
        reg_number: str = "21CS001",
        subjects: Optional[List[Subject]] = None,
        scheduled: Optional[datetime] = None,
        notified: bool = False,
        phone: Optional[str] = "+919800000001",
        **kwargs,
    ) -> Marksheet:
        if subjects is None:
            subjects = [
                Subject(subject_name="Data Structures", marks=78, grade="A"),
                Subject(subject_name="Discrete Mathematics", marks=64, grade="B"),
            ]
        return Marksheet(
            id=marksheet_id,
            student_details=StudentDetails(
                name=name,
                reg_number=reg_number,
                year="II",
                section="A",
                department=department,
                parent_phone_number=phone,
            ),
            subjects=subjects,
            staff_id=staff_id,
            staff_name="Staff One",
            examination_id="exam-1",
            examination_name=examination_name,
            state=build_state(status, scheduled=scheduled, notified=notified),
            created_at=NOW,
            updated_at=NOW,
            **kwargs,
        )

    return factory


class InMemoryMarksheetStore:
    """Marksheet store keeping flat records in a dict, like the database would."""

    def __init__(self, marksheets=()):
        self.records: Dict[str, dict] = {m.id: m.to_record() for m in marksheets}
        self.failing_ids: set = set()
        self.saved_ids: List[str] = []

    def status_of(self, marksheet_id: str) -> str:
        return self.records[marksheet_id]["status"]

    async def fetch_eligible_marksheets(self, marksheet_filter: MarksheetFilter) -> List[Marksheet]:
        marksheets = [Marksheet.from_record(r) for r in self.records.values()]
        if marksheet_filter.department:
            marksheets = [m for m in marksheets if m.department == marksheet_filter.department]
        if marksheet_filter.staff_id:
            marksheets = [m for m in marksheets if m.staff_id == marksheet_filter.staff_id]
        if marksheet_filter.examination_id:
            marksheets = [m for m in marksheets if m.examination_id == marksheet_filter.examination_id]
        if marksheet_filter.examination_name:
            marksheets = [m for m in marksheets if m.examination_name == marksheet_filter.examination_name]
        if marksheet_filter.statuses:
            marksheets = [m for m in marksheets if m.status in marksheet_filter.statuses]
        return marksheets[: marksheet_filter.limit]

    async def get_marksheet(self, marksheet_id: str) -> Optional[Marksheet]:
        record = self.records.get(marksheet_id)
        return Marksheet.from_record(record) if record else None

    async def save_marksheet(self, marksheet: Marksheet) -> Marksheet:
        if marksheet.id in self.failing_ids:
            raise TransientError(f"Store unavailable for {marksheet.id}")
        if marksheet.id not in self.records:
            raise MarksheetNotFound(f"Marksheet not found: {marksheet.id}")
        self.records[marksheet.id] = {**self.records[marksheet.id], **marksheet.to_record()}
        self.saved_ids.append(marksheet.id)
        return Marksheet.from_record(self.records[marksheet.id])

    async def set_visited(self, marksheet_id: str, visited: bool) -> None:
        if marksheet_id not in self.records:
            raise MarksheetNotFound(f"Marksheet not found: {marksheet_id}")
        self.records[marksheet_id]["visited"] = visited


@pytest.fixture
def store_factory():
    return InMemoryMarksheetStore


@pytest.fixture
def delivery() -> MagicMock:
    """Delivery channel that always succeeds unless reconfigured."""
    channel = MagicMock()
    channel.send = AsyncMock(return_value=DeliveryResult(success=True))
    return channel


@pytest.fixture
def profiles(staff, hod, other_hod, other_staff) -> Dict[str, Actor]:
    return {a.id: a for a in (staff, hod, other_hod, other_staff)}


@pytest.fixture
def fetch_profile(profiles) -> AsyncMock:
    async def fetch(actor_id: str) -> Optional[Actor]:
        return profiles.get(actor_id)

    return AsyncMock(side_effect=fetch)
