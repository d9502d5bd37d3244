"""
Error types and the handlers that turn them into the API's response envelope:
{"success": false, "message": ..., "errors": [{"path", "message"}]}
"""

import logging
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(AppError):
    status_code = 404


class AlreadyExistsError(AppError):
    status_code = 409


class ValidationFailed(AppError):
    status_code = 400

    def __init__(self, message: str = "Validation Error", errors: Optional[List[dict]] = None):
        super().__init__(message)
        self.errors = errors or []


class PaymentProviderError(AppError):
    status_code = 502


class PaymentRequiredError(AppError):
    status_code = 402


class FlowStateError(AppError):
    status_code = 409


def format_validation_errors(raw_errors) -> List[dict]:
    """Flatten pydantic/FastAPI error dicts into [{path, message}]."""
    formatted = []
    for err in raw_errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        formatted.append({"path": ".".join(loc), "message": message})
    return formatted


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    content = {"success": False, "message": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def register_error_handlers(app: FastAPI):
    @app.exception_handler(ValidationFailed)
    async def handle_validation_failed(request: Request, exc: ValidationFailed):
        logger.warning("Validation failed on %s %s: %s", request.method, request.url.path, exc.errors)
        return error_response(exc.status_code, exc.message, errors=exc.errors)

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = format_validation_errors(exc.errors())
        logger.warning("Request validation failed on %s %s: %s", request.method, request.url.path, errors)
        return error_response(400, "Validation Error", errors=errors)

    @app.exception_handler(ValidationError)
    async def handle_model_validation(request: Request, exc: ValidationError):
        errors = format_validation_errors(exc.errors())
        logger.warning("Model validation failed on %s %s: %s", request.method, request.url.path, errors)
        return error_response(400, "Validation Error", errors=errors)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(500, "Internal Server Error")
