from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError, HTTPException
from fastapi.responses import JSONResponse
from typing import Any

from orderdesk.config.sentry import capture_exception, add_breadcrumb
from orderdesk.core.exceptions import (
    OrderDeskError,
    InvalidTransition,
    ForbiddenTransition,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    OrderNotFound,
)
from orderdesk.logging.utils import get_app_logger
from orderdesk.middlewares.request_context import request_context

# Settings
from orderdesk.config.settings import OrderDeskConfigs
configs = OrderDeskConfigs()

logger = get_app_logger(__name__)

# Debug mode detection (DEBUG=false means production)
DEBUG = configs.DEBUG

# most specific first
DOMAIN_STATUS_CODES = [
    (ForbiddenTransition, status.HTTP_403_FORBIDDEN),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
    (OrderNotFound, status.HTTP_404_NOT_FOUND),
]


def domain_status_code(exc: OrderDeskError) -> int:
    for exc_type, status_code in DOMAIN_STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def _error_payload(exc: OrderDeskError) -> dict:
    payload = {"success": False, "error": exc.code, "message": exc.message}
    if isinstance(exc, InvalidTransition):
        payload["from_status"] = exc.from_status
        payload["to_status"] = exc.to_status
    elif isinstance(exc, ValidationError):
        payload["field"] = exc.field
    elif isinstance(exc, ConflictError):
        payload["expected_version"] = exc.expected_version
        payload["actual_version"] = exc.actual_version
    return payload


async def _domain_exception_handler(request: Request, exc: OrderDeskError):
    """Domain errors keep their specific message in every environment."""
    request_context.module_name = 'middleware_handlers'
    status_code = domain_status_code(exc)
    if status_code >= 500:
        logger.error(f"domain_error | method={request.method} url={str(request.url)} code={exc.code} message={exc.message}")
        add_breadcrumb(
            message=f"{exc.code} on {request.method} {request.url}",
            category="external",
            level="error",
            data={"message": exc.message},
        )
        capture_exception(exc)
    else:
        logger.warning(f"domain_error | method={request.method} url={str(request.url)} code={exc.code} message={exc.message}")
    return JSONResponse(status_code=status_code, content=_error_payload(exc))


async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with production-safe messages."""
    request_context.module_name = 'middleware_handlers'
    logger.warning(f"validation_error | method={request.method} url={str(request.url)} errors={exc.errors()}")

    add_breadcrumb(
        message=f"Validation error on {request.method} {request.url}",
        category="validation",
        level="error",
        data={"errors": exc.errors()}
    )

    if not DEBUG:
        payload = {"success": False, "error": "INVALID_REQUEST", "message": "Invalid request data"}
    else:
        # "field_path: error_message"
        error_messages = []
        for err in exc.errors():
            field_path = " -> ".join(str(loc) for loc in err.get("loc", []))
            error_msg = err.get("msg", "Invalid input")
            error_messages.append(f"{field_path}: {error_msg}")

        if len(error_messages) == 1:
            payload = {"success": False, "error": "INVALID_REQUEST", "message": error_messages[0]}
        else:
            payload = {"success": False, "error": "INVALID_REQUEST", "message": "Validation errors", "errors": error_messages}

    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=payload)


async def _general_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions with production-safe messages."""
    request_context.module_name = 'middleware_handlers'
    logger.error(
        f"unhandled_exception | method={request.method} url={str(request.url)} exception_type={type(exc).__name__} exception_message={str(exc)}",
        exc_info=True,
    )

    add_breadcrumb(
        message=f"Unhandled exception on {request.method} {request.url}",
        category="exception",
        level="error",
        data={"exception_type": type(exc).__name__, "exception_message": str(exc)}
    )
    capture_exception(exc)

    if not DEBUG:
        payload = {"success": False, "error": "INTERNAL_ERROR", "message": "Something went wrong"}
    else:
        payload = {"success": False, "error": "INTERNAL_ERROR", "message": f"Internal server error: {str(exc)}"}

    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)


async def _http_exception_handler(request: Request, exc: Any):
    """Handle HTTP exceptions with production-safe messages."""
    request_context.module_name = 'middleware_handlers'
    status_code = getattr(exc, 'status_code', status.HTTP_500_INTERNAL_SERVER_ERROR)
    detail = getattr(exc, 'detail', str(exc))
    if status_code >= 500:
        logger.error(f"http_exception | method={request.method} url={str(request.url)} status_code={status_code} detail={detail}", exc_info=True)
        add_breadcrumb(
            message=f"HTTP {status_code} error on {request.method} {request.url}",
            category="http",
            level="error",
            data={"status_code": status_code, "detail": detail}
        )
        capture_exception(exc)
    else:
        logger.warning(f"http_exception | method={request.method} url={str(request.url)} status_code={status_code} detail={detail}")

    if not DEBUG:
        if status_code == 404:
            message = "Resource not found"
        elif status_code == 403:
            message = "Access denied"
        elif status_code == 401:
            message = "Authentication required"
        elif 400 <= status_code < 500:
            message = "Invalid request"
        else:
            message = "Something went wrong"
    else:
        message = detail

    return JSONResponse(status_code=status_code, content={"success": False, "error": "HTTP_ERROR", "message": message})


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the given FastAPI instance."""
    app.add_exception_handler(OrderDeskError, _domain_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _general_exception_handler)
