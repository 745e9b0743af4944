# proofmeet/services/attendance_tracking.py
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from proofmeet.core.config import get_settings
from proofmeet.core.exceptions import SessionAlreadyCompletedError, SessionNotFoundError
from proofmeet.models.attendance_session import AttendanceSession
from proofmeet.schemas.activity import ActivityEventIn
from proofmeet.schemas.attendance_session import (
    AttendanceSessionCreate,
    SessionLeaveIn,
    SessionStatus,
)
from proofmeet.utils.timestamps import ensure_utc

logger = logging.getLogger(__name__)


async def get_session_or_raise(db: AsyncSession, session_id: int) -> AttendanceSession:
    result = await db.execute(
        select(AttendanceSession).where(AttendanceSession.id == session_id)
    )
    attendance_session = result.scalar_one_or_none()
    if attendance_session is None:
        raise SessionNotFoundError(session_id)
    return attendance_session


async def create_session(
    db: AsyncSession,
    payload: AttendanceSessionCreate,
) -> AttendanceSession:
    """
    Register a participant's join. The session stays IN_PROGRESS until the
    provider leave callback arrives.
    """
    settings = get_settings()

    attendance_session = AttendanceSession(
        participant_id=payload.participant_id,
        participant_name=payload.participant_name,
        participant_email=payload.participant_email,
        case_number=payload.case_number,
        meeting_id=payload.meeting_id,
        meeting_name=payload.meeting_name,
        meeting_date=ensure_utc(payload.meeting_date),
        meeting_duration_minutes=(
            payload.meeting_duration_minutes or settings.DEFAULT_MEETING_DURATION_MINUTES
        ),
        join_time=ensure_utc(payload.join_time),
        status=SessionStatus.IN_PROGRESS.value,
        activity_timeline=[],
        card_generated=False,
    )
    db.add(attendance_session)
    await db.commit()
    await db.refresh(attendance_session)

    logger.info(
        "Session %s opened for participant %s in meeting %s",
        attendance_session.id,
        attendance_session.participant_id,
        attendance_session.meeting_id,
    )
    return attendance_session


async def add_activity_event(
    db: AsyncSession,
    session_id: int,
    payload: ActivityEventIn,
) -> AttendanceSession:
    """
    Append one event to the session timeline. Recorded events are never
    rewritten; kinds are stored as received and filtered at normalization.
    """
    attendance_session = await get_session_or_raise(db, session_id)

    timestamp = ensure_utc(payload.timestamp) if payload.timestamp else datetime.now(tz=timezone.utc)
    event = {
        "timestamp": timestamp.isoformat(),
        "kind": payload.kind,
        "source": payload.source,
        "metadata": payload.metadata,
    }

    # Reassign so the JSON column is flagged dirty.
    attendance_session.activity_timeline = [*(attendance_session.activity_timeline or []), event]
    await db.commit()
    await db.refresh(attendance_session)
    return attendance_session


async def record_leave(
    db: AsyncSession,
    session_id: int,
    payload: SessionLeaveIn,
) -> AttendanceSession:
    """
    Apply the authoritative leave from the provider webhook.

    leave_time and COMPLETED are set exactly once; a repeated callback raises
    SessionAlreadyCompletedError instead of overwriting ground truth.
    """
    attendance_session = await get_session_or_raise(db, session_id)

    if attendance_session.leave_time is not None or (
        attendance_session.status == SessionStatus.COMPLETED.value
    ):
        raise SessionAlreadyCompletedError(session_id)

    leave_time = ensure_utc(payload.leave_time)
    if leave_time < ensure_utc(attendance_session.join_time):
        raise ValueError("leave_time must not be earlier than join_time")

    attendance_session.leave_time = leave_time
    attendance_session.status = SessionStatus.COMPLETED.value
    attendance_session.verification_method = payload.verification_method
    await db.commit()
    await db.refresh(attendance_session)

    logger.info("Session %s completed at %s", session_id, leave_time.isoformat())
    return attendance_session
