"""Response envelope ``{code, message, data}`` and the handlers that render errors in it."""

from typing import Any
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from campus_orders.domain.exceptions import DomainException, ErrorCode
from shared.core import get_logger

logger = get_logger(__name__)


def ok(data: Any = None, message: str = "success") -> dict:
    return {"code": ErrorCode.SUCCESS.value, "message": message, "data": jsonable_encoder(data)}


def error_body(code: ErrorCode, message: str, data: Any = None) -> dict:
    return {"code": code.value, "message": message, "data": jsonable_encoder(data)}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        if exc.http_status >= 500:
            logger.error(f"{type(exc).__name__}: {exc.message}", exc_info=exc)
        else:
            logger.info(
                f"{type(exc).__name__} on {request.url.path}: {exc.message}",
                extra={'extra_fields': {'code': exc.code.value, 'details': exc.details}},
            )
        details = {key: value for key, value in exc.details.items() if value is not None}
        return JSONResponse(
            status_code=exc.http_status,
            content=error_body(exc.code, exc.message, details or None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in error["loc"] if part != "body"), "message": error["msg"]}
            for error in exc.errors()
        ]
        message = errors[0]["message"] if errors else "invalid request"
        return JSONResponse(
            status_code=400,
            content=error_body(ErrorCode.VALIDATION_ERROR, message, {"errors": errors}),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content=error_body(ErrorCode.INTERNAL_ERROR, "internal server error"),
        )
