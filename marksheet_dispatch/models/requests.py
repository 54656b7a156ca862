"""Request bodies for the HTTP API.

Every mutating request names its actor explicitly with ``actor_id``; the
profile (role, department, signature) is loaded from the store.
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from marksheet_dispatch.models.marksheet import StudentDetailsUpdate, Subject


class ActorRequest(BaseModel):
    actor_id: str = Field(min_length=1, description="ID of the staff member or HOD acting")


class HodResponseRequest(ActorRequest):
    response: str = Field(description="approved, rejected or rescheduled")
    comments: Optional[str] = Field(default=None, max_length=2000)
    scheduled_dispatch_date: Optional[Union[datetime, str]] = Field(
        default=None,
        description="Required for rescheduled; optional dispatch time for approved",
    )


class BulkHodResponseRequest(HodResponseRequest):
    marksheet_ids: List[str] = Field(min_length=1, max_length=1000)


class EditMarksheetRequest(ActorRequest):
    student_details: Optional[StudentDetailsUpdate] = None
    subjects: Optional[List[Subject]] = None


class VisitedRequest(BaseModel):
    visited: bool
