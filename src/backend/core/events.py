"""
Application lifecycle event handlers.

Startup configures logging and the ledger store; shutdown releases
database connections.
"""

from typing import Callable

import structlog
from fastapi import FastAPI

from core.config import settings
from core.logging import configure_logging
from db.session import close_db, init_db

logger = structlog.get_logger(__name__)


def create_start_app_handler(app: FastAPI) -> Callable:
    """Create startup event handler."""

    async def start_app() -> None:
        configure_logging()
        logger.info("app_starting", app_env=settings.APP_ENV)

        await init_db(create_tables=settings.DB_CREATE_TABLES)
        logger.info("database_initialized")

        logger.info("app_started")

    return start_app


def create_stop_app_handler(app: FastAPI) -> Callable:
    """Create shutdown event handler."""

    async def stop_app() -> None:
        logger.info("app_stopping")
        await close_db()
        logger.info("app_stopped")

    return stop_app
