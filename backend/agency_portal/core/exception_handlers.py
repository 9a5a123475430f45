"""
FastAPI exception handlers.

WHY: Every failure the portal returns, whether a lifecycle rule
(400/409/422/423), a missing record (404) or a malformed request body,
uses one JSON envelope:

    {"error": <name>, "message": <text>, "status_code": <int>, "details": {...}}

The frontend shows `message` to staff and clients, and reads `details`
(e.g. current_state, expected_version) to decide whether to reload.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from agency_portal.core.exceptions import AppException, StaleProposalError


logger = logging.getLogger(__name__)


def _envelope(
    error: str, message: str, status_code: int, details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "status_code": status_code,
            "details": details,
        },
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Render AppException subclasses with their own status code.

    Server-side failures (5xx, e.g. the email provider) are logged as
    errors; lost optimistic-concurrency races are logged as warnings so
    frequent conflicts on one proposal show up in the logs.
    """
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
    elif isinstance(exc, StaleProposalError):
        logger.warning(f"Concurrent modification on {request.url.path}: {exc.context}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle request schema errors (unknown service type, bad currency, ...).

    Field paths drop the leading "body"/"query" segment, so the frontend
    gets "items.0.service_type" it can map onto the builder form.
    """
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error["loc"]]
        if location and location[0] in ("body", "query", "path"):
            location = location[1:]
        errors.append(
            {
                "field": ".".join(location),
                "message": error["msg"],
                "type": error["type"],
            }
        )

    return _envelope("ValidationError", "Request validation failed", 400, {"errors": errors})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes and wrong methods, in the same envelope."""
    return _envelope("HTTPException", str(exc.detail), exc.status_code)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all for unexpected exceptions.

    The traceback is logged; the caller only gets a generic message, never
    database or provider internals.
    """
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return _envelope("InternalServerError", "An unexpected error occurred", 500)
