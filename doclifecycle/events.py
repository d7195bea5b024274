import logging

from fastapi import FastAPI

from doclifecycle.db.session import engine
from doclifecycle.utils.redis_client import close_redis_client

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    # Schema changes are applied by Alembic, never at startup.
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        await close_redis_client()
        await engine.dispose()
