"""Tests for the marksheet workflow state machine."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from marksheet_dispatch.errors import IllegalTransition, SignatureMissing, ValidationError
from marksheet_dispatch.models.marksheet import ALL_STATUSES, StudentDetailsUpdate, Subject
from marksheet_dispatch.services import workflow
from marksheet_dispatch.services.workflow import (
    HOD_RESPOND_FROM,
    REQUEST_DISPATCH_FROM,
    SEND_DISPATCH_FROM,
    VERIFY_FROM,
)

LATER = datetime(2025, 3, 2, 12, 0, tzinfo=timezone.utc)


class TestVerify:

    def test_owner_verifies_draft(self, make_marksheet, staff):
        marksheet = make_marksheet()

        verified = workflow.verify(marksheet, staff, now=LATER)

        assert verified.status == "verified_by_staff"
        assert verified.state.verified_by == "Staff One"
        assert verified.state.verified_at == LATER
        assert verified.updated_at == LATER
        assert marksheet.status == "draft"

    def test_non_owner_rejected(self, make_marksheet, other_staff):
        with pytest.raises(IllegalTransition):
            workflow.verify(make_marksheet(), other_staff)

    def test_hod_cannot_verify(self, make_marksheet, hod):
        with pytest.raises(IllegalTransition):
            workflow.verify(make_marksheet(), hod)

    def test_unsigned_staff_blocked(self, make_marksheet, unsigned_staff):
        with pytest.raises(SignatureMissing) as exc_info:
            workflow.verify(make_marksheet(), unsigned_staff)
        assert exc_info.value.field == "eSignature"

    @pytest.mark.parametrize("status", sorted(set(ALL_STATUSES) - VERIFY_FROM))
    def test_only_from_draft(self, make_marksheet, staff, status):
        with pytest.raises(IllegalTransition):
            workflow.verify(make_marksheet(status=status), staff)


class TestRequestDispatch:

    @pytest.mark.parametrize("status", sorted(REQUEST_DISPATCH_FROM))
    def test_legal_sources(self, make_marksheet, staff, status):
        requested = workflow.request_dispatch(make_marksheet(status=status), staff, now=LATER)

        assert requested.status == "dispatch_requested"
        assert requested.state.request.requested_at == LATER
        assert requested.state.request.requested_by == "Staff One"

    def test_re_request_drops_previous_response(self, make_marksheet, staff):
        requested = workflow.request_dispatch(make_marksheet(status="rejected_by_hod"), staff)

        assert requested.hod_response is None
        assert requested.to_record()["dispatchRequest"]["hodComments"] is None

    @pytest.mark.parametrize("status", sorted(set(ALL_STATUSES) - REQUEST_DISPATCH_FROM))
    def test_illegal_sources(self, make_marksheet, staff, status):
        with pytest.raises(IllegalTransition):
            workflow.request_dispatch(make_marksheet(status=status), staff)

    def test_non_owner_rejected(self, make_marksheet, other_staff):
        with pytest.raises(IllegalTransition):
            workflow.request_dispatch(make_marksheet(status="verified_by_staff"), other_staff)


class TestHodRespond:

    def test_approve(self, make_marksheet, hod):
        approved = workflow.hod_respond(make_marksheet(status="dispatch_requested"), hod, "approved", now=LATER)

        assert approved.status == "approved_by_hod"
        assert approved.hod_response == "approved"
        assert approved.state.decision.hod_id == "hod-1"
        assert approved.state.decision.comments is None
        assert approved.state.scheduled_dispatch_date is None

    def test_response_is_case_insensitive(self, make_marksheet, hod):
        assert workflow.hod_respond(make_marksheet(status="dispatch_requested"), hod, " Approved ").status == "approved_by_hod"

    def test_reject_with_comments(self, make_marksheet, hod):
        rejected = workflow.hod_respond(
            make_marksheet(status="dispatch_requested"), hod, "rejected", comments="Recheck Networks marks"
        )

        assert rejected.status == "rejected_by_hod"
        assert rejected.state.decision.comments == "Recheck Networks marks"

    def test_reschedule_requires_date(self, make_marksheet, hod):
        with pytest.raises(ValidationError) as exc_info:
            workflow.hod_respond(make_marksheet(status="dispatch_requested"), hod, "rescheduled")
        assert exc_info.value.field == "scheduledDispatchDate"

    def test_reschedule_rejects_bad_date(self, make_marksheet, hod):
        with pytest.raises(ValidationError) as exc_info:
            workflow.hod_respond(
                make_marksheet(status="dispatch_requested"), hod, "rescheduled",
                scheduled_dispatch_date="someday",
            )
        assert exc_info.value.field == "scheduledDispatchDate"

    def test_reschedule_with_date(self, make_marksheet, hod):
        rescheduled = workflow.hod_respond(
            make_marksheet(status="dispatch_requested"), hod, "rescheduled",
            scheduled_dispatch_date="2025-03-05T10:00:00Z",
        )

        assert rescheduled.status == "rescheduled_by_hod"
        assert rescheduled.hod_response == "rescheduled"
        assert rescheduled.state.scheduled_dispatch_date == datetime(2025, 3, 5, 10, 0, tzinfo=timezone.utc)

    def test_rescheduled_can_be_answered_again(self, make_marksheet, hod):
        approved = workflow.hod_respond(make_marksheet(status="rescheduled_by_hod"), hod, "approved")
        assert approved.status == "approved_by_hod"

    def test_approve_with_optional_schedule(self, make_marksheet, hod):
        when = LATER + timedelta(days=1)
        approved = workflow.hod_respond(
            make_marksheet(status="dispatch_requested"), hod, "approved", scheduled_dispatch_date=when
        )
        assert approved.state.scheduled_dispatch_date == when

    def test_invalid_response(self, make_marksheet, hod):
        with pytest.raises(ValidationError) as exc_info:
            workflow.hod_respond(make_marksheet(status="dispatch_requested"), hod, "maybe")
        assert exc_info.value.field == "response"

    def test_other_department_rejected(self, make_marksheet, other_hod):
        with pytest.raises(IllegalTransition):
            workflow.hod_respond(make_marksheet(status="dispatch_requested"), other_hod, "approved")

    def test_staff_cannot_respond(self, make_marksheet, staff):
        with pytest.raises(IllegalTransition):
            workflow.hod_respond(make_marksheet(status="dispatch_requested"), staff, "approved")

    def test_unsigned_hod_blocked(self, make_marksheet, unsigned_hod):
        marksheet = make_marksheet(status="dispatch_requested")
        with pytest.raises(SignatureMissing):
            workflow.hod_respond(marksheet, unsigned_hod, "approved")
        assert marksheet.status == "dispatch_requested"

    @pytest.mark.parametrize("status", sorted(set(ALL_STATUSES) - HOD_RESPOND_FROM))
    def test_illegal_sources(self, make_marksheet, hod, status):
        with pytest.raises(IllegalTransition):
            workflow.hod_respond(make_marksheet(status=status), hod, "approved")


class TestSendDispatch:

    def test_mark_dispatched(self, make_marksheet, staff):
        dispatched = workflow.mark_dispatched(make_marksheet(status="approved_by_hod"), staff, now=LATER)

        assert dispatched.status == "dispatched"
        assert dispatched.hod_response == "approved"
        assert dispatched.state.dispatched_at == LATER
        assert dispatched.state.approved_at == datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def test_resend_updates_dispatched_at(self, make_marksheet, staff):
        dispatched = workflow.mark_dispatched(make_marksheet(status="dispatched"), staff, now=LATER)
        assert dispatched.state.dispatched_at == LATER

    @pytest.mark.parametrize("status", sorted(set(ALL_STATUSES) - SEND_DISPATCH_FROM))
    def test_illegal_sources(self, make_marksheet, staff, status):
        with pytest.raises(IllegalTransition):
            workflow.check_can_send_dispatch(make_marksheet(status=status), staff)

    def test_only_owner_dispatches(self, make_marksheet, hod, other_staff):
        marksheet = make_marksheet(status="approved_by_hod")
        with pytest.raises(IllegalTransition):
            workflow.check_can_send_dispatch(marksheet, hod)
        with pytest.raises(IllegalTransition):
            workflow.check_can_send_dispatch(marksheet, other_staff)

    def test_record_delivery_failure_keeps_status(self, make_marksheet):
        failed = workflow.record_delivery_failure(make_marksheet(status="approved_by_hod"), "HTTP 500")

        assert failed.status == "approved_by_hod"
        assert failed.state.dispatch_error == "HTTP 500"

    def test_mark_pre_dispatch_notified(self, make_marksheet):
        notified = workflow.mark_pre_dispatch_notified(make_marksheet(status="approved_by_hod"))
        assert notified.state.pre_dispatch_notification_sent is True


class TestEditMarksheet:

    def test_subject_edit_resets_to_draft(self, make_marksheet, staff):
        marksheet = make_marksheet(status="approved_by_hod")

        edited = workflow.edit_marksheet(
            marksheet, staff, subjects=[Subject(subject_name="Networks", marks=35)]
        )

        assert edited.status == "draft"
        assert edited.overall_result == "Fail"
        assert edited.subjects[0].result == "Fail"

    def test_details_edit_keeps_status(self, make_marksheet, staff):
        marksheet = make_marksheet(status="dispatch_requested")
        details = StudentDetailsUpdate(parent_phone_number="+919811111111")

        edited = workflow.edit_marksheet(marksheet, staff, student_details=details)

        assert edited.status == "dispatch_requested"
        assert edited.student_details.parent_phone_number == "+919811111111"

    def test_details_edit_merges_fields(self, make_marksheet, staff):
        marksheet = make_marksheet(status="verified_by_staff")

        edited = workflow.edit_marksheet(
            marksheet, staff, student_details=StudentDetailsUpdate.model_validate({"section": "B"})
        )

        assert edited.student_details.section == "B"
        assert edited.student_details.name == "Asha Kumar"
        assert edited.student_details.reg_number == "21CS001"
        assert edited.student_details.department == "CSE"
        assert edited.student_details.parent_phone_number == "+919800000001"
        assert edited.status == "verified_by_staff"

    def test_department_not_editable(self):
        with pytest.raises(PydanticValidationError):
            StudentDetailsUpdate.model_validate({"name": "Asha K", "department": "ECE"})

    def test_clearing_required_detail_rejected(self, make_marksheet, staff):
        with pytest.raises(ValidationError) as exc_info:
            workflow.edit_marksheet(
                make_marksheet(), staff, student_details=StudentDetailsUpdate(name=None)
            )
        assert exc_info.value.field == "name"

    def test_dispatched_cannot_be_edited(self, make_marksheet, staff):
        with pytest.raises(IllegalTransition):
            workflow.edit_marksheet(
                make_marksheet(status="dispatched"), staff, subjects=[Subject(subject_name="X", marks=90)]
            )

    def test_non_owner_cannot_edit(self, make_marksheet, other_staff):
        details = StudentDetailsUpdate(name="B")
        with pytest.raises(IllegalTransition):
            workflow.edit_marksheet(make_marksheet(), other_staff, student_details=details)
