"""
error_handler.py — Map engine errors to JSON responses.

Every engine error is returned as
  { "error": { "code", "message", "key" }, "generated_at" }
so the failing entity (institution, enrollment, subject, period) is visible
to the caller.
"""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.errors import (
    ApprovalConflict,
    ConfigInvariantViolation,
    DuplicateError,
    EngineError,
    InsufficientData,
    NotFoundError,
    OutOfRangeError,
    WindowClosedError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    NotFoundError: 404,
    DuplicateError: 409,
    ApprovalConflict: 409,
    WindowClosedError: 409,
    ConfigInvariantViolation: 422,
    OutOfRangeError: 422,
    InsufficientData: 422,
}


def _now_iso():
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def status_for(exc: EngineError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 400


def add_error_handlers(app: FastAPI):
    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        status = status_for(exc)
        logger.info("%s %s -> %d %s", request.method, request.url.path, status, exc)
        return JSONResponse(
            status_code=status,
            content={"error": exc.to_dict(), "generated_at": _now_iso()},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": {"code": "INTERNAL_ERROR", "message": str(exc), "key": {}},
                "generated_at": _now_iso(),
            },
        )
