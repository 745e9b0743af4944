# proofmeet/db/session.py
import logging
import os
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from proofmeet.core.config import get_settings
from proofmeet.db.base import Base

# Both tables must be on Base.metadata before create_all runs.
from proofmeet.models.attendance_session import AttendanceSession  # noqa: F401
from proofmeet.models.compliance_card import ComplianceCard  # noqa: F401

logger = logging.getLogger(__name__)

settings = get_settings()

IS_TEST = "PYTEST_CURRENT_TEST" in os.environ or settings.APP_ENV == "test"

# pytest-asyncio gives every test its own loop; pooled connections would
# outlive theirs.
engine = create_async_engine(
    settings.DB_URL,
    echo=False,
    future=True,
    poolclass=NullPool if IS_TEST else None,
)

# expire_on_commit=False: finalization reads the card back after commit.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session for the sessions, cards and participants routes.
    """
    async with AsyncSessionLocal() as db:
        yield db


async def create_schema() -> None:
    """
    Create the attendance_sessions and compliance_cards tables if missing.
    Existing rows are never touched.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema ready (%s)", engine.url.get_backend_name())


async def reset_schema() -> None:
    """
    Drop and recreate every table. Used by the async test modules to start
    each case from an empty card chain.
    """
    if not IS_TEST:
        raise RuntimeError("reset_schema() refuses to run outside the test environment")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
