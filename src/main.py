"""FastAPI application entry point for the zero-trust risk engine."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.middleware.error_handler import global_exception_handler
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes.health import router as health_router
from src.api.routes.risk import assessments_router
from src.api.routes.risk import router as risk_router
from src.config import settings
from src.domains.risk.justification import get_justification_dispatcher
from src.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level)

    logger.info(
        "risk_engine_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
    )

    # Initialize database tables
    from src.db.database import init_db

    await init_db()

    dispatcher = get_justification_dispatcher()
    if settings.justification_enabled:
        await dispatcher.start()

    yield

    await dispatcher.stop(drain_timeout=settings.justification_drain_seconds)
    logger.info("risk_engine_shutting_down")


app = FastAPI(
    title="Zero-Trust Risk Engine",
    description="Per-transaction payment risk scoring for the marketplace checkout",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Structured logging middleware
app.add_middleware(StructuredLoggingMiddleware)

# Global exception handler
app.add_exception_handler(Exception, global_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(risk_router)
app.include_router(assessments_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
