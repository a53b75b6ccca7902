"""Health and readiness endpoints."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from src.config import settings
from src.domains.risk.justification import get_justification_dispatcher

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    from src.main import get_uptime

    return {
        "status": "healthy",
        "version": settings.app_version,
        "uptime_seconds": get_uptime(),
    }


@router.get("/ready")
async def ready() -> JSONResponse:
    from src.db.database import check_db

    db_ok = await check_db()

    dispatcher = get_justification_dispatcher()
    stats = dispatcher.stats

    status_code = 200 if db_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if db_ok else "degraded",
            "database": db_ok,
            "justification_worker": {
                "enabled": settings.justification_enabled,
                "running": dispatcher.is_running,
                "pending": dispatcher.pending,
                "processed": stats.processed,
                "failed": stats.failed,
                "dropped": stats.dropped,
                "last_error": stats.last_error,
            },
        },
    )
