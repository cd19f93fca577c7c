"""
Application lifecycle event handlers.

Manages startup and shutdown of the database, the external adapter clients
and the sweep scheduler.
"""

from typing import Callable

import structlog
from fastapi import FastAPI

from core.config import settings
from db.session import close_db, init_db
from services.polymarket_client import PolymarketClient
from services.vocdoni_client import VocdoniClient

logger = structlog.get_logger(__name__)


def create_start_app_handler(app: FastAPI) -> Callable:
    """Create startup event handler."""

    async def start_app() -> None:
        logger.info(f"Starting {settings.APP_NAME} API...")

        await init_db()

        # Shared adapter clients, injected into routes through api.deps
        app.state.tally = VocdoniClient.from_settings()
        app.state.oracle = PolymarketClient.from_settings()
        logger.info(
            "adapters_initialized",
            vocdoni_api=settings.VOCDONI_API_URL,
            ballot_relay=bool(settings.VOCDONI_CAST_URL),
            polymarket_api=settings.POLYMARKET_API_URL,
        )

        if settings.ENABLE_SCHEDULER:
            try:
                from services.background_scheduler import start_scheduler

                await start_scheduler(tally=app.state.tally, oracle=app.state.oracle)
            except Exception as e:
                logger.exception("Failed to start background scheduler", error=str(e))
                logger.warning("Polls will only close through the admin endpoint!")

        logger.info(f"{settings.APP_NAME} API started successfully")

    return start_app


def create_stop_app_handler(app: FastAPI) -> Callable:
    """Create shutdown event handler."""

    async def stop_app() -> None:
        logger.info(f"Shutting down {settings.APP_NAME} API...")

        try:
            from services.background_scheduler import stop_scheduler

            await stop_scheduler()
        except Exception as e:
            logger.warning(f"Background scheduler cleanup failed: {e}")

        for name in ("tally", "oracle"):
            client = getattr(app.state, name, None)
            if client is not None:
                await client.aclose()

        await close_db()

        logger.info(f"{settings.APP_NAME} API shutdown complete")

    return stop_app
