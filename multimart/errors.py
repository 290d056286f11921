import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


# =====================================================
# DOMAIN EXCEPTIONS
# =====================================================

class MarketplaceError(Exception):
    """Base class for every business-rule failure raised by the services."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND


class ValidationFailed(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class DomainRuleError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(MarketplaceError):
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT


class GatewayError(MarketplaceError):
    status_code = status.HTTP_502_BAD_GATEWAY


# =====================================================
# RESPONSE ENVELOPE
# =====================================================

def ok(message: str, data=None) -> dict:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return body


def _error_response(status_code: int, message: str, errors=None) -> JSONResponse:
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def _field_name(loc) -> str:
    # drop the leading "body" / "query" marker
    parts = [str(p) for p in loc[1:]] if len(loc) > 1 else [str(p) for p in loc]
    return ".".join(parts)


# =====================================================
# HANDLERS
# =====================================================

def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": _field_name(err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error_response(status.HTTP_400_BAD_REQUEST, "Validation error", errors)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled error | method=%s path=%s",
            request.method,
            request.url.path,
        )
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
