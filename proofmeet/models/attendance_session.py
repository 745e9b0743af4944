# proofmeet/models/attendance_session.py
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    func,
)

from proofmeet.db.base import Base


class AttendanceSession(Base):
    """
    One participant's attempt to attend one scheduled meeting occurrence.

    `leave_time` and `status=COMPLETED` are written exactly once, by the
    provider leave callback.
    """

    __tablename__ = "attendance_sessions"

    id = Column(Integer, primary_key=True, index=True)

    participant_id = Column(String(128), nullable=False, index=True)
    participant_name = Column(String(255), nullable=True)
    participant_email = Column(String(255), nullable=True)
    case_number = Column(String(64), nullable=True)

    meeting_id = Column(String(128), nullable=False, index=True)
    meeting_name = Column(String(255), nullable=False)
    meeting_date = Column(DateTime(timezone=True), nullable=False)
    meeting_duration_minutes = Column(Integer, nullable=False, default=60)

    join_time = Column(DateTime(timezone=True), nullable=False)
    leave_time = Column(DateTime(timezone=True), nullable=True)

    status = Column(
        String(32),
        nullable=False,
        default="IN_PROGRESS",
        index=True,
    )

    verification_method = Column(String(32), nullable=True)

    activity_timeline = Column(
        JSON,
        nullable=False,
        default=list,
    )

    card_generated = Column(Boolean, nullable=False, default=False)
    is_valid = Column(Boolean, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<AttendanceSession id={self.id} participant_id={self.participant_id} "
            f"meeting_id={self.meeting_id} status={self.status}>"
        )
