# proofmeet/main.py
from fastapi import FastAPI

from proofmeet.api.routes import cards, health, internal, participants, sessions
from proofmeet.core.config import get_settings
from proofmeet.core.logging_config import configure_logging
from proofmeet.db.session import create_schema


def create_app() -> FastAPI:
    """
    Application factory for the ProofMeet compliance service.
    """
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Backend service that turns raw meeting attendance into court-admissible\n"
            "compliance cards: durations, engagement scoring, compliance validation\n"
            "and a tamper-evident chain of trust per participant."
        ),
        version="0.1.0",
    )

    # Routers
    app.include_router(health.router)
    app.include_router(sessions.router)
    app.include_router(cards.router)
    app.include_router(participants.router)
    app.include_router(internal.router)

    @app.on_event("startup")
    async def on_startup() -> None:  # pragma: no cover
        await create_schema()

    return app


app = create_app()
