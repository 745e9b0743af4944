# proofmeet/api/routes/internal.py
from http import HTTPStatus

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from proofmeet.db.session import get_db
from proofmeet.schemas.compliance_card import FinalizationRunSummary
from proofmeet.services.finalization import finalize_pending_sessions

router = APIRouter(
    prefix="/internal",
    tags=["Internal"],
)


@router.post(
    "/run-finalization",
    response_model=FinalizationRunSummary,
    status_code=HTTPStatus.OK,
    summary="Finalize every completed session that has no court card yet",
    description=(
        "Intended to be called from a cron job or scheduler as a safety net behind the "
        "per-session finalize call.\n\n"
        "- Picks up sessions with status `COMPLETED` and `card_generated = false`\n"
        "- Sessions still `IN_PROGRESS` are never touched\n"
        "- A session whose finalization fails is counted in `failed` and stays "
        "eligible for the next run"
    ),
    responses={
        200: {
            "description": "Run executed. A summary is returned.",
            "content": {
                "application/json": {
                    "example": {
                        "checked": 2,
                        "finalized": 2,
                        "failed": 0,
                        "cards": [],
                    }
                }
            },
        },
    },
)
async def run_finalization(
    db: AsyncSession = Depends(get_db),
) -> FinalizationRunSummary:
    """
    Run one batch finalization pass.
    """
    return await finalize_pending_sessions(db)
