"""Pydantic model for workflow actors (staff and HODs)."""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ActorRole = Literal["staff", "hod"]


class Actor(BaseModel):
    """The person performing a workflow action.

    Passed explicitly into every workflow call. ``e_signature`` is an opaque
    encoded image; its presence is all the workflow cares about.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Actor ID")
    role: ActorRole = Field(description="staff or hod")
    department: str = Field(description="Department code, e.g. CSE")
    name: str = Field(default="", description="Display name")
    e_signature: Optional[str] = Field(default=None, repr=False, description="Encoded signature image")

    @property
    def has_signature(self) -> bool:
        return bool(self.e_signature and self.e_signature.strip())

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Actor":
        """Build an Actor from a stored ``users`` row."""
        return cls(
            id=str(record.get("id") or record.get("_id")),
            role=record.get("role", "staff"),
            department=record.get("department", ""),
            name=record.get("name", ""),
            e_signature=record.get("eSignature") or record.get("e_signature"),
        )
