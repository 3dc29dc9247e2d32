from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


logger = logging.getLogger(__name__)


@dataclass
class APIError(Exception):
    status_code: int
    code: str
    message: str
    details: dict[str, Any] | None = None


def not_found(what: str) -> APIError:
    return APIError(status_code=404, code="not_found", message=f"{what} not found.")


def unauthenticated() -> APIError:
    return APIError(status_code=401, code="unauthenticated", message="Sign in required.")


def error_response(*, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> JSONResponse:
    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=int(status_code), content=payload)


async def api_error_handler(_req: Request, exc: APIError) -> JSONResponse:
    return error_response(
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


async def validation_error_handler(_req: Request, exc: RequestValidationError) -> JSONResponse:
    # Normalize Pydantic validation errors into our contract envelope.
    return error_response(
        status_code=400,
        code="invalid_argument",
        message="Request validation failed.",
        details={"errors": jsonable_encoder(exc.errors())},
    )


async def unhandled_error_handler(req: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", req.method, req.url.path, exc_info=exc)
    return error_response(
        status_code=500,
        code="internal",
        message="Internal server error.",
        details={"type": type(exc).__name__},
    )


async def invalid_limit_handler(_req: Request, exc: ValueError) -> JSONResponse:
    return error_response(status_code=400, code="invalid_argument", message=str(exc))


async def conflict_error_handler(_req: Request, exc: ValueError) -> JSONResponse:
    return error_response(status_code=409, code="conflict", message=str(exc))
