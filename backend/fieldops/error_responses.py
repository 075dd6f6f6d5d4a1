"""Error envelope helpers: every failure renders as ``{"ok": false, "error": {...}}``."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .domain_errors import DomainError, InternalError, ValidationError

logger = logging.getLogger(__name__)


def build_error_response(exc: DomainError) -> JSONResponse:
    """Render DomainError as the API error envelope with stable domain code."""
    error: dict[str, object] = {
        "code": exc.code,
        "message": exc.message,
    }
    if exc.details is not None:
        error["details"] = exc.details

    return JSONResponse(
        status_code=exc.http_status,
        content=jsonable_encoder({"ok": False, "error": error}),
    )


def ok_response(data: object) -> dict[str, object]:
    """Success envelope; ``data`` may be a pydantic model, list of models or None."""
    return {"ok": True, "data": jsonable_encoder(data, by_alias=True)}


async def _handle_domain_error(_: Request, exc: DomainError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(f"Domain error {exc.code}: {exc.message}")
    return build_error_response(exc)


async def _handle_request_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    return build_error_response(
        ValidationError("Invalid input data", details={"fields": fields})
    )


_CODE_BY_STATUS = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
}


async def _handle_http_exception(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return build_error_response(
        DomainError(
            code=_CODE_BY_STATUS.get(exc.status_code, "INTERNAL" if exc.status_code >= 500 else "HTTP_ERROR"),
            http_status=exc.status_code,
            message=detail,
        )
    )


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error in {request.method} {request.url.path}: {exc}", exc_info=exc)
    return build_error_response(InternalError())


def register_error_handlers(app: FastAPI) -> None:
    """Install envelope-rendering exception handlers on the app."""
    app.add_exception_handler(DomainError, _handle_domain_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.add_exception_handler(Exception, _handle_unexpected_error)
