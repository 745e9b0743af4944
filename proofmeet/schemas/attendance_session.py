# proofmeet/schemas/attendance_session.py
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SessionStatus(str, Enum):
    """
    IN_PROGRESS until the provider leave callback arrives, then COMPLETED.
    """

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


# --------------------------------------------------------------------------
# Create schema (POST /sessions)
# --------------------------------------------------------------------------

class AttendanceSessionCreate(BaseModel):
    """
    Registers a participant's join. Identity fields come read-only from the
    registration subsystem.
    """

    participant_id: str = Field(..., examples=["participant-42"])
    participant_name: str | None = Field(default=None, examples=["Jane Doe"])
    participant_email: str | None = Field(default=None, examples=["jane@example.com"])
    case_number: str | None = Field(default=None, examples=["CR-2024-12345"])

    meeting_id: str = Field(..., examples=["zoom-8812345678"])
    meeting_name: str = Field(..., examples=["Tuesday Night AA"])
    meeting_date: datetime = Field(
        ...,
        description="Scheduled start of the meeting occurrence.",
    )
    meeting_duration_minutes: int | None = Field(
        default=None,
        gt=0,
        description="Scheduled duration. Falls back to DEFAULT_MEETING_DURATION_MINUTES.",
        examples=[60],
    )

    join_time: datetime = Field(
        ...,
        description="Authoritative join time reported by the video-conferencing provider.",
    )


# --------------------------------------------------------------------------
# Leave callback (POST /sessions/{id}/leave)
# --------------------------------------------------------------------------

class SessionLeaveIn(BaseModel):
    leave_time: datetime = Field(
        ...,
        description="Authoritative leave time reported by the provider webhook.",
    )
    verification_method: str | None = Field(
        default="ZOOM_WEBHOOK",
        description="Provenance of the join/leave pair. Null when not webhook-sourced.",
    )


# --------------------------------------------------------------------------
# Read schema
# --------------------------------------------------------------------------

class AttendanceSessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    participant_id: str
    participant_name: str | None = None
    case_number: str | None = None
    meeting_id: str
    meeting_name: str
    meeting_date: datetime
    meeting_duration_minutes: int
    join_time: datetime
    leave_time: datetime | None = None
    status: SessionStatus
    verification_method: str | None = None
    activity_timeline: list[dict[str, Any]] = Field(default_factory=list)
    card_generated: bool = False
    is_valid: bool | None = None
