"""Pydantic models for examinations (named batches of marksheets)."""

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from marksheet_dispatch.errors import ValidationError


class ExaminationCreate(BaseModel):
    """Request model for creating an examination. Every field is required."""
    examination_name: str = Field(min_length=1, description="e.g. 'Model Exam I'")
    year: str = Field(min_length=1, description="Year of study: I, II, III, IV")
    semester: str = Field(min_length=1, description="Semester: I..VIII")
    academic_year: str = Field(min_length=1, description="e.g. '2024-25'")
    examination_month: str = Field(min_length=1, description="Month number 1-12")
    examination_year: str = Field(min_length=1, description="e.g. '2025'")
    staff_id: str = Field(min_length=1, description="Owning staff member")


class Examination(BaseModel):
    """A stored examination. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    examination_name: str
    year: str
    semester: str
    academic_year: str
    examination_month: str
    examination_year: str
    department: str
    staff_id: str
    staff_name: str
    status: Literal["active", "completed", "cancelled"] = "active"
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Examination":
        """Build an Examination from a stored row.

        Raises:
            ValidationError: If a required column is missing or invalid
        """
        try:
            return cls(
                id=str(record.get("id") or record.get("_id")),
                examination_name=record.get("examinationName"),
                year=record.get("year"),
                semester=record.get("semester"),
                academic_year=record.get("academicYear"),
                examination_month=_text(record.get("examinationMonth")),
                examination_year=_text(record.get("examinationYear")),
                department=record.get("department"),
                staff_id=_text(record.get("staffId")),
                staff_name=record.get("staffName") or "",
                status=record.get("status") or "active",
                created_at=record.get("createdAt"),
            )
        except PydanticValidationError as e:
            error = e.errors()[0]
            raise ValidationError(
                f"Malformed examination record {record.get('id')}: {error['msg']}",
                field=".".join(str(p) for p in error["loc"]) or None,
            ) from e


def _text(value: Any) -> Optional[str]:
    return str(value) if value is not None else None
