"""Global exception handlers: every failure leaves as the ``{success: false, error}`` envelope."""
import logging
import traceback
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.core.config import settings
from storefront.core.errors import StorefrontError

logger = logging.getLogger(__name__)

HTTP_CODES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    503: "SERVICE_UNAVAILABLE",
}


def _error_body(code: str, message: str, exc: Optional[BaseException] = None, **extra) -> dict:
    error = {"code": code, "message": message, **extra}
    if exc is not None and settings.is_development:
        error["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return {"success": False, "error": error}


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        if exc.http_status >= 500:
            logger.error(
                "%s on %s: %s", type(exc).__name__, request.url.path, getattr(exc, "detail", exc.message),
                exc_info=exc, extra={"error_code": exc.code, "path": request.url.path},
            )
            body = _error_body(exc.code, exc.message, exc)
        else:
            logger.warning(
                "%s on %s: %s", exc.code, request.url.path, exc.message,
                extra={"error_code": exc.code, "path": request.url.path},
            )
            body = exc.to_response()
        return JSONResponse(status_code=exc.http_status, content=body)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        details = [
            {"field": ".".join(str(loc) for loc in e["loc"]), "message": e["msg"], "type": e["type"]}
            for e in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body("VALIDATION_ERROR", "Invalid input", details=details),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        code = HTTP_CODES.get(exc.status_code, "INTERNAL_SERVER_ERROR" if exc.status_code >= 500 else "HTTP_ERROR")
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s", request.url.path, exc_info=exc, extra={"path": request.url.path})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body("INTERNAL_SERVER_ERROR", "An unexpected error occurred", exc),
        )
