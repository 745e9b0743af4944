# proofmeet/api/routes/sessions.py
from http import HTTPStatus

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.ext.asyncio import AsyncSession

from proofmeet.core.exceptions import (
    ChainPositionConflictError,
    NotReadyError,
    SessionAlreadyCompletedError,
    SessionNotFoundError,
)
from proofmeet.db.session import get_db
from proofmeet.schemas.activity import ActivityEventIn
from proofmeet.schemas.attendance_session import (
    AttendanceSessionCreate,
    AttendanceSessionRead,
    SessionLeaveIn,
)
from proofmeet.schemas.compliance_card import ComplianceCardRead
from proofmeet.services.attendance_tracking import (
    add_activity_event,
    create_session,
    get_session_or_raise,
    record_leave,
)
from proofmeet.services.finalization import finalize_session

router = APIRouter(prefix="/sessions", tags=["Sessions"])


def _not_found(exc: SessionNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=HTTPStatus.NOT_FOUND,
        detail=f"Attendance session with id {exc.session_id} not found.",
    )


@router.post(
    "",
    response_model=AttendanceSessionRead,
    status_code=HTTPStatus.CREATED,
    summary="Register a participant's join",
    description=(
        "Opens an attendance session for one participant and one meeting occurrence.\n\n"
        "`join_time` is the provider-reported join time and is treated as ground truth. "
        "The session stays `IN_PROGRESS` until the leave callback is received."
    ),
    responses={
        201: {"description": "Session created."},
        422: {"description": "Validation error in the payload."},
    },
)
async def open_session(
    payload: AttendanceSessionCreate,
    db: AsyncSession = Depends(get_db),
) -> AttendanceSessionRead:
    attendance_session = await create_session(db, payload)
    return AttendanceSessionRead.model_validate(attendance_session)


@router.get(
    "/{session_id}",
    response_model=AttendanceSessionRead,
    summary="Get an attendance session",
    responses={404: {"description": "Session not found."}},
)
async def get_session(
    session_id: int = Path(..., ge=1, description="Numeric ID of the session."),
    db: AsyncSession = Depends(get_db),
) -> AttendanceSessionRead:
    try:
        attendance_session = await get_session_or_raise(db, session_id)
    except SessionNotFoundError as exc:
        raise _not_found(exc)
    return AttendanceSessionRead.model_validate(attendance_session)


@router.post(
    "/{session_id}/events",
    response_model=AttendanceSessionRead,
    status_code=HTTPStatus.CREATED,
    summary="Append an activity event to the session timeline",
    description=(
        "Records one heartbeat or activity signal from the in-meeting monitor.\n\n"
        "Events are append-only. Missing `source` tags are accepted; unknown kinds are "
        "stored as received and ignored when the timeline is normalized."
    ),
    responses={404: {"description": "Session not found."}},
)
async def append_event(
    payload: ActivityEventIn,
    session_id: int = Path(..., ge=1, description="Numeric ID of the session."),
    db: AsyncSession = Depends(get_db),
) -> AttendanceSessionRead:
    try:
        attendance_session = await add_activity_event(db, session_id, payload)
    except SessionNotFoundError as exc:
        raise _not_found(exc)
    return AttendanceSessionRead.model_validate(attendance_session)


@router.post(
    "/{session_id}/leave",
    response_model=AttendanceSessionRead,
    summary="Record the authoritative leave (provider callback)",
    description=(
        "Sets `leave_time` and moves the session to `COMPLETED`. This happens exactly "
        "once per session; a second callback is rejected with 409."
    ),
    responses={
        400: {"description": "leave_time earlier than join_time."},
        404: {"description": "Session not found."},
        409: {"description": "Session already completed."},
    },
)
async def leave_session(
    payload: SessionLeaveIn,
    session_id: int = Path(..., ge=1, description="Numeric ID of the session."),
    db: AsyncSession = Depends(get_db),
) -> AttendanceSessionRead:
    try:
        attendance_session = await record_leave(db, session_id, payload)
    except SessionNotFoundError as exc:
        raise _not_found(exc)
    except SessionAlreadyCompletedError as exc:
        raise HTTPException(status_code=HTTPStatus.CONFLICT, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc))
    return AttendanceSessionRead.model_validate(attendance_session)


@router.post(
    "/{session_id}/finalize",
    response_model=ComplianceCardRead,
    summary="Finalize a completed session into a compliance card",
    description=(
        "Computes durations, engagement and the validation verdict, then creates the "
        "session's court card and links it into the participant's chain of trust.\n\n"
        "Idempotent: calling it again returns the same card. A FAILED verdict is a "
        "normal response, not an error. Returns 409 while the session has no "
        "authoritative leave time, or when concurrent finalizations of the same "
        "participant kept claiming the same chain position (both retriable)."
    ),
    responses={
        404: {"description": "Session not found."},
        409: {
            "description": "Session not ready yet, or its chain position was taken concurrently."
        },
    },
)
async def finalize(
    session_id: int = Path(..., ge=1, description="Numeric ID of the session."),
    db: AsyncSession = Depends(get_db),
) -> ComplianceCardRead:
    try:
        attendance_session = await get_session_or_raise(db, session_id)
        card = await finalize_session(db, attendance_session)
    except SessionNotFoundError as exc:
        raise _not_found(exc)
    except NotReadyError as exc:
        raise HTTPException(status_code=HTTPStatus.CONFLICT, detail=str(exc))
    except ChainPositionConflictError as exc:
        raise HTTPException(status_code=HTTPStatus.CONFLICT, detail=str(exc))
    return ComplianceCardRead.model_validate(card)
