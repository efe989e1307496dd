"""Response envelope helpers and exception handlers.

Routes return ok(...) for success. Errors are raised as HTTPException
(mapped from service errors in each route) and rendered here in the
failure envelope, so no route ever builds an error body by hand.
"""

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from stagevote.schemas.base import ApiError, ApiResponse

logger = structlog.get_logger()


def ok(data: Any, message: str = "Success", status_code: int = 200) -> ApiResponse:
    return ApiResponse(status_code=status_code, data=data, message=message)


def error_response(
    status_code: int,
    message: str,
    errors: list | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    body = ApiError(status_code=status_code, message=message, errors=errors or [])
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    errors = [] if isinstance(exc.detail, str) else [exc.detail]
    return error_response(
        exc.status_code, message, errors, headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg", "invalid value"),
        }
        for err in exc.errors()
    ]
    return error_response(422, "Validation failed", errors)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("api.unhandled_error", path=request.url.path)
    return error_response(500, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
