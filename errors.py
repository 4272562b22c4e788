import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Any]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationError(ApiError):
    status_code = 400
    default_message = "Validation errors"


class BusinessRuleError(ApiError):
    status_code = 400
    default_message = "Request violates a business rule"


class InsufficientStockError(BusinessRuleError):
    default_message = "Insufficient stock available"


class EmptyCartError(BusinessRuleError):
    default_message = "Cart is empty"


class DuplicateReviewError(BusinessRuleError):
    default_message = "You have already reviewed this product"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class AuthError(ApiError):
    status_code = 401
    default_message = "Not authenticated"


class AuthorizationError(ApiError):
    status_code = 403
    default_message = "Access denied"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Resource was modified concurrently, please retry"


def envelope(data: Any = None, message: Optional[str] = None, success: bool = True, errors: Optional[List[Any]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": success}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if errors is not None:
        body["errors"] = errors
    return body


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        return JSONResponse(status_code=exc.status_code, content=envelope(message=exc.message, success=False, errors=exc.errors))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content=envelope(message="Validation errors", success=False, errors=errors))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        message = "Route not found" if exc.status_code == 404 and exc.detail == "Not Found" else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content=envelope(message=message, success=False), headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        settings = request.app.state.settings
        message = str(exc) if settings.is_development else "Internal Server Error"
        return JSONResponse(status_code=500, content=envelope(message=message, success=False))
