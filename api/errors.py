"""Mapping of domain errors to HTTP responses"""
import logging
from typing import Any, Dict, Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from domain.exceptions import (
    Conflict, DomainError, Forbidden, GatewayError, GatewayTimeout, InvalidInput,
    NotFound, SlotConflict, Unauthorized
)

logger = logging.getLogger(__name__)

GATEWAY_ERROR_MESSAGE = "Payment service unavailable"
GATEWAY_TIMEOUT_MESSAGE = "Payment service timed out, please retry"
INTERNAL_ERROR_MESSAGE = "Internal server error"

# Most specific first
_STATUS_BY_ERROR = (
    (GatewayTimeout, 504),
    (GatewayError, 502),
    (InvalidInput, 400),
    (Unauthorized, 401),
    (Forbidden, 403),
    (NotFound, 404),
    (Conflict, 409),
)


def status_for(exc: DomainError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _body(detail: str, code: str, conflict: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"detail": detail, "code": code}
    if conflict is not None:
        body["conflict"] = conflict
    return body


def _first_error(errors: Sequence[Dict[str, Any]]) -> str:
    """Field and message of the first error, without the rejected value"""
    if not errors:
        return "Invalid input"
    error = errors[0]
    field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
    return f"{field}: {error['msg']}" if field else error["msg"]


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        status_code = status_for(exc)
        headers = None

        if isinstance(exc, GatewayError):
            logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
            detail = GATEWAY_TIMEOUT_MESSAGE if isinstance(exc, GatewayTimeout) else GATEWAY_ERROR_MESSAGE
            return JSONResponse(_body(detail, exc.code), status_code=status_code)

        if status_code == 500:
            logger.error("Unmapped domain error on %s %s: %r", request.method, request.url.path, exc)
            return JSONResponse(_body(INTERNAL_ERROR_MESSAGE, "internal_error"), status_code=500)

        if isinstance(exc, Unauthorized):
            headers = {"WWW-Authenticate": "Bearer"}

        conflict = None
        if isinstance(exc, SlotConflict):
            conflict = jsonable_encoder({"start_time": exc.start_time, "end_time": exc.end_time})

        logger.info("%s %s -> %s %s", request.method, request.url.path, status_code, exc.code)
        return JSONResponse(_body(exc.message, exc.code, conflict), status_code=status_code, headers=headers)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(_body(_first_error(exc.errors()), "invalid_input"), status_code=400)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("%s %s -> 400 invalid_input", request.method, request.url.path)
        return JSONResponse(_body(_first_error(exc.errors()), "invalid_input"), status_code=400)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(_body(INTERNAL_ERROR_MESSAGE, "internal_error"), status_code=500)
