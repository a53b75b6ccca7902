"""Global exception handling for errors that escape a route.

The risk check itself never reaches this handler: pipeline failures are
converted to the fail-safe assessment inside the engine. This covers the read
endpoints and anything unexpected in the HTTP layer.
"""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = structlog.get_logger()


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")

    if isinstance(exc, ValueError):
        logger.warning("bad_request", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=400,
            content={"error": str(exc), "request_id": request_id},
        )

    if isinstance(exc, LookupError):
        logger.warning("not_found", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=404,
            content={"error": str(exc), "request_id": request_id},
        )

    if isinstance(exc, SQLAlchemyError):
        logger.exception("database_error", request_id=request_id, path=request.url.path)
        return JSONResponse(
            status_code=503,
            content={"error": "Database unavailable", "request_id": request_id},
        )

    logger.exception("unhandled_exception", request_id=request_id, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={"error": "An unexpected error occurred", "request_id": request_id},
    )
