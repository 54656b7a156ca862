"""Group marksheets by examination for filtering, statistics and bulk scoping."""

from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel

from marksheet_dispatch.models.marksheet import Marksheet
from marksheet_dispatch.services.workflow import HOD_RESPOND_FROM
from marksheet_dispatch.utils.normalizers import registration_sort_key

ALL_EXAMINATIONS = "all"


class ExaminationStats(BaseModel):
    """Status counts for one examination."""
    total: int = 0
    draft: int = 0
    verified: int = 0
    requested: int = 0
    approved: int = 0
    dispatched: int = 0
    rejected: int = 0
    rescheduled: int = 0


_STATUS_FIELD = {
    "draft": "draft",
    "verified_by_staff": "verified",
    "dispatch_requested": "requested",
    "approved_by_hod": "approved",
    "dispatched": "dispatched",
    "rejected_by_hod": "rejected",
    "rescheduled_by_hod": "rescheduled",
}


def sort_by_registration(marksheets: Iterable[Marksheet]) -> List[Marksheet]:
    return sorted(marksheets, key=lambda m: registration_sort_key(m.student_details.reg_number))


def group_by_examination(marksheets: Iterable[Marksheet]) -> Dict[str, List[Marksheet]]:
    """Examination name -> marksheets sorted by registration number."""
    groups: Dict[str, List[Marksheet]] = {}
    for marksheet in marksheets:
        groups.setdefault(marksheet.display_examination_name, []).append(marksheet)
    return {name: sort_by_registration(group) for name, group in groups.items()}


def examination_stats(marksheets: Iterable[Marksheet]) -> Dict[str, ExaminationStats]:
    stats: Dict[str, ExaminationStats] = {}
    for name, group in group_by_examination(marksheets).items():
        counts = {"total": len(group)}
        for marksheet in group:
            field = _STATUS_FIELD[marksheet.status]
            counts[field] = counts.get(field, 0) + 1
        stats[name] = ExaminationStats(**counts)
    return stats


def filter_marksheets(
    marksheets: Iterable[Marksheet],
    examination: Optional[str] = ALL_EXAMINATIONS,
    search: Optional[str] = None,
) -> List[Marksheet]:
    """Scope to one examination (or all) and an optional name/reg-number search."""
    if examination and examination != ALL_EXAMINATIONS:
        selected = [m for m in marksheets if m.display_examination_name == examination]
    else:
        selected = list(marksheets)

    query = (search or "").strip().lower()
    if query:
        selected = [
            m for m in selected
            if query in m.student_details.name.lower()
            or query in m.student_details.reg_number.lower()
        ]
    return sort_by_registration(selected)


def bulk_hod_candidates(
    marksheets: Iterable[Marksheet],
    examination: Optional[str] = ALL_EXAMINATIONS,
) -> List[Marksheet]:
    """Marksheets an HOD can act on in bulk (pending or rescheduled requests)."""
    return [m for m in filter_marksheets(marksheets, examination) if m.status in HOD_RESPOND_FROM]
