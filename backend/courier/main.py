# backend/courier/main.py
"""
Courier messaging service - application entry point.

Run with:
    uvicorn courier.main:app --app-dir backend
"""

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import is_running_tests, settings
from .database import SessionLocal, check_database_connection, init_db
from .errors import register_error_handlers
from .routes import health, prometheus
from .routes.v1 import (
    conversations as conversations_v1,
    messages as messages_v1,
    users as users_v1,
    ws as ws_v1,
)
from .services.messaging.fanout import FanoutRouter
from .services.messaging.presence_store import DatabasePresenceStore
from .services.messaging.registry import ConnectionRegistry

# Configure logging
logging.basicConfig(
    level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info("Courier API starting up...")
    logger.info(f"Environment: {settings.environment}")
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    # The store must be reachable at startup; failing here is fatal.
    await asyncio.to_thread(check_database_connection)
    if settings.auto_create_tables:
        await asyncio.to_thread(init_db)

    registry = ConnectionRegistry(presence_store=DatabasePresenceStore(SessionLocal))
    app.state.connection_registry = registry
    app.state.fanout_router = FanoutRouter(registry, SessionLocal)
    logger.info(
        "Realtime router ready (backlog_on_connect=%s)", settings.deliver_backlog_on_connect
    )

    yield

    logger.info("Courier API shutting down...")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Courier",
        description="Direct messaging fanout and lifecycle service",
        version="1.0.0",
        lifespan=app_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials="*" not in settings.cors_allowed_origins,
        allow_methods=["GET", "HEAD", "OPTIONS", "POST"],
        allow_headers=["*"],
    )
    logger.info("CORS allow_origins=%s", settings.cors_allowed_origins)

    register_error_handlers(app)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(messages_v1.router, prefix="/messages")
    api_v1.include_router(conversations_v1.router, prefix="/conversations")
    api_v1.include_router(users_v1.router, prefix="/users")

    app.include_router(api_v1)
    app.include_router(ws_v1.router)
    app.include_router(health.router)
    app.include_router(prometheus.router)
    return app


app = create_app()
