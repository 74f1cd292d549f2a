import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from hostelhub.services.paystack_service import PaymentConfigurationError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_error_response(status_code: int, message: str, details: Optional[Any] = None) -> dict:
    response = {"message": message, "code": status_code}
    if details:
        response["details"] = details
    return response


def _error(status_code: int, message: str, details: Optional[Any] = None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(status_code, message, details),
        **({"headers": headers} if headers else {}),
    )


def _where(request: Request) -> str:
    return f"{request.method} {request.url.path}"


async def payment_configuration_exception_handler(request: Request, exc: PaymentConfigurationError):
    """Missing gateway configuration is an operator error: fail loudly with a 500."""
    logger.error("Payment gateway misconfigured (%s) during %s", exc.detail, _where(request))
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.detail)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP Exception: {exc.status_code} - {exc.detail} for {_where(request)}")
    return _error(exc.status_code, exc.detail, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [f"Field '{'.'.join(map(str, e['loc']))}': {e['msg']}" for e in exc.errors()]
    logger.warning("Rejected request body for %s: %s", _where(request), errors)
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", {"errors": errors})


async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled %s during %s: %s", type(exc).__name__, _where(request), exc, exc_info=exc)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected internal server error occurred.")


def register_global_exception_handlers(app: FastAPI):
    for exc_class, handler in (
        (PaymentConfigurationError, payment_configuration_exception_handler),
        (StarletteHTTPException, http_exception_handler),
        (RequestValidationError, validation_exception_handler),
        (Exception, general_exception_handler),
    ):
        app.exception_handler(exc_class)(handler)
