"""Pass/Fail/Absent derivation for subjects and whole marksheets.

All functions here are pure: the same input always yields the same output,
with no I/O and no hidden state.

Precedence for a single subject:
    explicit result -> absent grade/marks -> grade -> marks -> "Pass"

The final "Pass" fallback for a subject with no usable signal is a
permissive policy kept from the existing records; callers that need strict
validation must check completeness before deriving.
"""

from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from marksheet_dispatch.models.marksheet import Marksheet, Subject
from marksheet_dispatch.utils.normalizers import (
    is_absent_value,
    normalize_result_token,
    normalize_token,
    parse_marks,
)

PASS_MARK_THRESHOLD = 50

SubjectLike = Union[Subject, Mapping[str, Any]]


def _get(source: Any, snake: str, camel: Optional[str] = None) -> Any:
    if isinstance(source, Mapping):
        if snake in source:
            return source[snake]
        return source.get(camel) if camel else None
    return getattr(source, snake, None)


def derive_result_from_grade(grade: Any) -> Optional[str]:
    """Grade token -> result. Any grade containing 'F' fails; other grades pass."""
    direct = normalize_result_token(grade)
    if direct:
        return direct
    token = normalize_token(grade)
    if not token:
        return None
    if "F" in token:
        return "Fail"
    return "Pass"


def derive_result_from_marks(marks: Any) -> Optional[str]:
    value = parse_marks(marks)
    if value is None:
        return None
    return "Pass" if value >= PASS_MARK_THRESHOLD else "Fail"


def derive_subject_result(subject: SubjectLike) -> str:
    """Return 'Pass', 'Fail' or 'Absent' for one subject."""
    direct = normalize_result_token(_get(subject, "result"))
    if direct:
        return direct

    grade = _get(subject, "grade")
    if is_absent_value(grade) or is_absent_value(_get(subject, "marks")):
        return "Absent"

    from_grade = derive_result_from_grade(grade)
    if from_grade:
        return from_grade

    from_marks = derive_result_from_marks(_get(subject, "marks"))
    if from_marks:
        return from_marks

    return "Pass"


def derive_overall_result(source: Union[Marksheet, Mapping[str, Any], Sequence[SubjectLike]]) -> str:
    """Return the overall result for a marksheet or a bare list of subjects.

    A stored overall result or grade wins over recomputation. Otherwise any
    Absent subject makes the sheet Absent, else any Fail makes it Fail, else
    Pass. An empty subject list is a vacuous Pass.
    """
    if isinstance(source, (Marksheet, Mapping)):
        stored = normalize_result_token(_get(source, "overall_result", "overallResult"))
        if stored:
            return stored
        from_grade = derive_result_from_grade(_get(source, "overall_grade", "overallGrade"))
        if from_grade:
            return from_grade
        subjects: Iterable[SubjectLike] = _get(source, "subjects") or []
    else:
        subjects = source

    results = {derive_subject_result(s) for s in subjects}
    if not results:
        return "Pass"
    if "Absent" in results:
        return "Absent"
    if "Fail" in results:
        return "Fail"
    return "Pass"


def normalize_subjects_with_result(subjects: Iterable[Subject]) -> list[Subject]:
    """Copy each subject with its derived result filled in."""
    return [s.model_copy(update={"result": derive_subject_result(s)}) for s in subjects]


def apply_result_normalization(marksheet: Marksheet) -> Marksheet:
    """Return a copy with every subject result and the overall result filled in."""
    subjects = normalize_subjects_with_result(marksheet.subjects)
    overall = derive_overall_result(marksheet.model_copy(update={"subjects": subjects}))
    return marksheet.model_copy(update={"subjects": subjects, "overall_result": overall})
