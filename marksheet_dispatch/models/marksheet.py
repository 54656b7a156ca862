"""Pydantic models for marksheets and their workflow state.

The workflow status is a discriminated union: each status has its own model
that carries only the fields valid in that status. A marksheet that is
``approved_by_hod`` always has an HOD decision whose response is "approved";
a ``draft`` marksheet has no dispatch request at all. This makes an
inconsistent ``status``/``dispatchRequest.hodResponse`` pair impossible to
construct.

``Marksheet.from_record`` / ``Marksheet.to_record`` convert between the typed
model and the flat camelCase document kept in the store.
"""

from datetime import datetime
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from marksheet_dispatch.errors import ValidationError
from marksheet_dispatch.utils.normalizers import assume_utc, is_absent_value, parse_marks

ResultValue = Literal["Pass", "Fail", "Absent"]
HodResponse = Literal["approved", "rejected", "rescheduled"]
MarksheetStatus = Literal[
    "draft",
    "verified_by_staff",
    "dispatch_requested",
    "rescheduled_by_hod",
    "approved_by_hod",
    "rejected_by_hod",
    "dispatched",
]

ALL_STATUSES: tuple[str, ...] = (
    "draft",
    "verified_by_staff",
    "dispatch_requested",
    "rescheduled_by_hod",
    "approved_by_hod",
    "rejected_by_hod",
    "dispatched",
)

# Stored timestamps without an offset are UTC.
UtcDatetime = Annotated[datetime, AfterValidator(assume_utc)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Subject(_CamelModel):
    """One subject row. Any of marks/grade/result may be missing."""
    subject_name: str
    marks: Optional[float] = None
    grade: Optional[str] = None
    result: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_marks(cls, data: Any) -> Any:
        # Imported sheets put "AB" in the marks column for absentees.
        if not isinstance(data, dict) or "marks" not in data:
            return data
        data = dict(data)
        marks = data["marks"]
        if is_absent_value(marks):
            data["marks"] = None
            if not data.get("grade"):
                data["grade"] = "AB"
        else:
            data["marks"] = parse_marks(marks)
        return data


class StudentDetails(_CamelModel):
    name: str
    reg_number: str
    year: Optional[str] = None
    section: Optional[str] = None
    department: str
    parent_phone_number: Optional[str] = None


class StudentDetailsUpdate(_CamelModel):
    """Fields a staff member may correct. The department is fixed by the store."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    reg_number: Optional[str] = None
    year: Optional[str] = None
    section: Optional[str] = None
    parent_phone_number: Optional[str] = None

    def merge_into(self, details: StudentDetails) -> StudentDetails:
        """Overlay the fields that were sent onto ``details``.

        Raises:
            ValidationError: If a required field is cleared
        """
        merged = {**details.model_dump(), **self.model_dump(exclude_unset=True)}
        try:
            return StudentDetails.model_validate(merged)
        except PydanticValidationError as e:
            error = e.errors()[0]
            loc = str(error["loc"][0]) if error.get("loc") else None
            raise ValidationError(f"Invalid student details: {error['msg']}", field=loc) from e


# ---- Workflow states ----

class DispatchRequest(BaseModel):
    """The pending request raised by staff."""
    model_config = ConfigDict(frozen=True)

    requested_at: UtcDatetime
    requested_by: str


class HodDecision(BaseModel):
    """The HOD's response to the current request."""
    model_config = ConfigDict(frozen=True)

    hod_id: str
    hod_name: str = ""
    comments: Optional[str] = None
    responded_at: UtcDatetime


class _State(BaseModel):
    model_config = ConfigDict(frozen=True)

    hod_response: ClassVar[Optional[str]] = None


class Draft(_State):
    status: Literal["draft"] = "draft"


class VerifiedByStaff(_State):
    status: Literal["verified_by_staff"] = "verified_by_staff"
    verified_by: str
    verified_at: UtcDatetime


class DispatchRequested(_State):
    status: Literal["dispatch_requested"] = "dispatch_requested"
    request: DispatchRequest


class RescheduledByHod(_State):
    hod_response: ClassVar[Optional[str]] = "rescheduled"

    status: Literal["rescheduled_by_hod"] = "rescheduled_by_hod"
    request: DispatchRequest
    decision: HodDecision
    scheduled_dispatch_date: UtcDatetime


class ApprovedByHod(_State):
    hod_response: ClassVar[Optional[str]] = "approved"

    status: Literal["approved_by_hod"] = "approved_by_hod"
    request: DispatchRequest
    decision: HodDecision
    scheduled_dispatch_date: Optional[UtcDatetime] = None
    pre_dispatch_notification_sent: bool = False
    dispatch_error: Optional[str] = None


class RejectedByHod(_State):
    hod_response: ClassVar[Optional[str]] = "rejected"

    status: Literal["rejected_by_hod"] = "rejected_by_hod"
    request: DispatchRequest
    decision: HodDecision


class Dispatched(_State):
    # Reached only through ApprovedByHod, so the stored response stays "approved".
    hod_response: ClassVar[Optional[str]] = "approved"

    status: Literal["dispatched"] = "dispatched"
    request: DispatchRequest
    approved_at: UtcDatetime
    dispatched_at: UtcDatetime
    dispatch_error: Optional[str] = None


MarksheetState = Annotated[
    Union[
        Draft,
        VerifiedByStaff,
        DispatchRequested,
        RescheduledByHod,
        ApprovedByHod,
        RejectedByHod,
        Dispatched,
    ],
    Field(discriminator="status"),
]


class Marksheet(BaseModel):
    """One student's result record for one examination."""

    id: str
    student_details: StudentDetails
    subjects: List[Subject] = Field(default_factory=list)
    staff_id: str
    staff_name: str = ""
    examination_id: Optional[str] = None
    examination_name: Optional[str] = None
    examination_date: Optional[UtcDatetime] = None
    semester: Optional[str] = None
    overall_result: Optional[str] = None
    overall_grade: Optional[str] = None
    visited: bool = False
    state: MarksheetState = Field(default_factory=Draft)
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def department(self) -> str:
        return self.student_details.department

    @property
    def hod_response(self) -> Optional[str]:
        return self.state.hod_response

    @property
    def display_examination_name(self) -> str:
        return self.examination_name or "Unknown Examination"

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Marksheet":
        """Build a typed Marksheet from a stored document.

        Raises:
            ValidationError: If the document is malformed or its status and
                dispatch request disagree
        """
        status = record.get("status") or "draft"
        try:
            state = _state_from_record(status, record)
            return cls(
                id=str(record.get("id") or record.get("_id")),
                student_details=StudentDetails.model_validate(record.get("studentDetails") or {}),
                subjects=[Subject.model_validate(s) for s in record.get("subjects") or []],
                staff_id=str(record.get("staffId") or ""),
                staff_name=record.get("staffName") or "",
                examination_id=record.get("examinationId"),
                examination_name=record.get("examinationName")
                or (record.get("studentDetails") or {}).get("examinationName"),
                examination_date=record.get("examinationDate"),
                semester=record.get("semester"),
                overall_result=record.get("overallResult"),
                overall_grade=record.get("overallGrade"),
                visited=bool(record.get("visited", False)),
                state=state,
                created_at=record.get("createdAt"),
                updated_at=record.get("updatedAt"),
            )
        except PydanticValidationError as e:
            raise ValidationError(
                f"Malformed marksheet record {record.get('id')}: {e.errors()[0]['msg']}",
                field=".".join(str(p) for p in e.errors()[0]["loc"]) or None,
            ) from e

    def to_record(self) -> Dict[str, Any]:
        """Flatten to the stored document shape (ISO timestamps, camelCase keys)."""
        record: Dict[str, Any] = {
            "id": self.id,
            "studentDetails": self.student_details.model_dump(by_alias=True),
            "subjects": [s.model_dump(by_alias=True, exclude_none=True) for s in self.subjects],
            "staffId": self.staff_id,
            "staffName": self.staff_name,
            "examinationId": self.examination_id,
            "examinationName": self.examination_name,
            "examinationDate": _iso(self.examination_date),
            "semester": self.semester,
            "overallResult": self.overall_result,
            "overallGrade": self.overall_grade,
            "visited": self.visited,
            "status": self.status,
            "updatedAt": _iso(self.updated_at),
        }
        record.update(_state_to_record(self.state))
        return record


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _state_to_record(state: Any) -> Dict[str, Any]:
    if isinstance(state, Draft):
        return {"dispatchRequest": None}
    if isinstance(state, VerifiedByStaff):
        return {
            "verifiedBy": state.verified_by,
            "verifiedAt": _iso(state.verified_at),
            "dispatchRequest": None,
        }

    # Every field is written on each change so stale HOD values never survive.
    dispatch_request: Dict[str, Any] = {
        "requestedAt": _iso(state.request.requested_at),
        "requestedBy": state.request.requested_by,
        "hodResponse": state.hod_response,
        "hodComments": None,
        "hodId": None,
        "hodName": None,
        "scheduledDispatchDate": None,
        "respondedAt": None,
        "preDispatchNotificationSent": False,
        "dispatchError": None,
        "dispatchedAt": None,
    }
    decision = getattr(state, "decision", None)
    if decision is not None:
        dispatch_request.update({
            "hodComments": decision.comments,
            "hodId": decision.hod_id,
            "hodName": decision.hod_name,
            "respondedAt": _iso(decision.responded_at),
        })
    if isinstance(state, (RescheduledByHod, ApprovedByHod)):
        dispatch_request["scheduledDispatchDate"] = _iso(state.scheduled_dispatch_date)
    if isinstance(state, ApprovedByHod):
        dispatch_request["preDispatchNotificationSent"] = state.pre_dispatch_notification_sent
        dispatch_request["dispatchError"] = state.dispatch_error
    if isinstance(state, Dispatched):
        dispatch_request.update({
            "respondedAt": _iso(state.approved_at),
            "dispatchedAt": _iso(state.dispatched_at),
            "dispatchError": state.dispatch_error,
        })
    return {"dispatchRequest": dispatch_request}


def _state_from_record(status: str, record: Dict[str, Any]) -> Any:
    if status == "draft":
        return Draft()
    if status == "verified_by_staff":
        return VerifiedByStaff(
            verified_by=record.get("verifiedBy") or record.get("staffName") or "",
            verified_at=record.get("verifiedAt") or record.get("updatedAt"),
        )
    if status not in ALL_STATUSES:
        raise ValidationError(f"Unknown marksheet status '{status}'", field="status")

    dr = record.get("dispatchRequest") or {}
    request = DispatchRequest(
        requested_at=dr.get("requestedAt"),
        requested_by=dr.get("requestedBy") or "",
    )
    if status == "dispatch_requested":
        return DispatchRequested(request=request)

    expected = {
        "rescheduled_by_hod": "rescheduled",
        "approved_by_hod": "approved",
        "rejected_by_hod": "rejected",
        "dispatched": "approved",
    }[status]
    if dr.get("hodResponse") != expected:
        raise ValidationError(
            f"Status '{status}' requires hodResponse '{expected}', "
            f"found {dr.get('hodResponse')!r}",
            field="dispatchRequest.hodResponse",
        )

    if status == "dispatched":
        return Dispatched(
            request=request,
            approved_at=dr.get("respondedAt"),
            dispatched_at=dr.get("dispatchedAt") or record.get("updatedAt"),
            dispatch_error=dr.get("dispatchError"),
        )

    decision = HodDecision(
        hod_id=str(dr.get("hodId") or record.get("hodId") or ""),
        hod_name=dr.get("hodName") or record.get("hodName") or "",
        comments=dr.get("hodComments"),
        responded_at=dr.get("respondedAt"),
    )
    if status == "rescheduled_by_hod":
        return RescheduledByHod(
            request=request,
            decision=decision,
            scheduled_dispatch_date=dr.get("scheduledDispatchDate"),
        )
    if status == "approved_by_hod":
        return ApprovedByHod(
            request=request,
            decision=decision,
            scheduled_dispatch_date=dr.get("scheduledDispatchDate"),
            pre_dispatch_notification_sent=bool(dr.get("preDispatchNotificationSent", False)),
            dispatch_error=dr.get("dispatchError"),
        )
    return RejectedByHod(request=request, decision=decision)


class MarksheetFilter(BaseModel):
    """Query for candidate marksheets. Unset fields do not filter."""
    department: Optional[str] = None
    staff_id: Optional[str] = None
    examination_id: Optional[str] = None
    examination_name: Optional[str] = None
    year: Optional[str] = None
    statuses: List[MarksheetStatus] = Field(default_factory=list)
    limit: int = Field(default=500, ge=1, le=1000)
