# proofmeet/api/routes/health.py
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from proofmeet.core.config import get_settings
from proofmeet.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str = Field(
        ...,
        description="`ok` when cards can be finalized, `degraded` when the card store is unreachable.",
        examples=["ok"],
    )
    database: str = Field(..., description="`ok` or `unavailable`.", examples=["ok"])
    app_name: str = Field(..., examples=["ProofMeet Compliance"])
    environment: str = Field(..., examples=["local"])
    timestamp_utc: datetime


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness and card-store reachability",
    description=(
        "Always answers 200 while the process is up. `database` reports whether the "
        "session and card tables can be reached; finalization and verification need them."
    ),
)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    settings = get_settings()

    database = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Health check could not reach the database: %s", exc)
        database = "unavailable"

    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        database=database,
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        timestamp_utc=datetime.now(tz=timezone.utc),
    )
