from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from caseflow.core.exceptions import (
    AccessDeniedError,
    CaseflowError,
    InternalResolutionError,
    NotAuthenticatedError,
)

logger = structlog.get_logger(__name__)


def _error_response(exc: CaseflowError) -> JSONResponse:
    detail: dict = {"code": exc.code, "message": exc.message}
    if isinstance(exc, AccessDeniedError) and exc.required:
        detail["required"] = exc.required

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, NotAuthenticatedError) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": detail}, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CaseflowError)
    async def handle_caseflow_error(request: Request, exc: CaseflowError) -> JSONResponse:
        if isinstance(exc, InternalResolutionError):
            logger.exception(
                "internal_resolution_error",
                exc_info=exc,
                path=request.url.path,
                error=exc.message,
                **exc.context,
            )
            # Never leak the internal message or context
            return _error_response(InternalResolutionError())

        logger.info(
            "request_rejected",
            path=request.url.path,
            code=exc.code,
            status_code=exc.status_code,
        )
        return _error_response(exc)

    @app.exception_handler(SQLAlchemyError)
    async def handle_store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("store_error", exc_info=exc, path=request.url.path)
        return _error_response(InternalResolutionError())
