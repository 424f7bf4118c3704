"""
Exception handlers.

Typed service errors map straight to their ``http_status`` and ``code``;
request validation failures become 400 ``VALIDATION_ERROR``; anything else
is logged with its traceback and reported as 500 ``INTERNAL_ERROR``.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from care_api.envelope import error_response
from care_kernel.exceptions import CareKernelError
from care_kernel.logging_config import get_logger

logger = get_logger("api.errors")


async def care_error_handler(request: Request, exc: CareKernelError) -> JSONResponse:
    details = {"field": exc.field} if getattr(exc, "field", None) else None
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        "request_rejected",
        extra={
            "method": request.method,
            "path": request.url.path,
            "error_code": exc.code,
            "status_code": exc.http_status,
        },
    )
    return error_response(exc.http_status, exc.code, exc.message, details)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    logger.info(
        "request_validation_failed",
        extra={"method": request.method, "path": request.url.path, "errors": len(errors)},
    )
    return error_response(400, "VALIDATION_ERROR", "Request validation failed", errors)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        exc_info=exc,
        extra={
            "method": request.method,
            "path": request.url.path,
            "error_type": type(exc).__name__,
        },
    )
    return error_response(500, "INTERNAL_ERROR", "Internal server error")


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CareKernelError, care_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
