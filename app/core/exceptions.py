from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Dict, Any, Optional
from app.core.logging import log_request_context

logger = logging.getLogger(__name__)

class APIError(Exception):
    """Base API exception"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Dict[str, Any] = None,
        data: Optional[Any] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.data = data
        super().__init__(self.message)

class AuthenticationError(APIError):
    """Authentication related errors"""

    def __init__(self, message: str = "Unauthenticated", details: Dict[str, Any] = None):
        super().__init__(message, 401, details)

class AuthorizationError(APIError):
    """Authorization related errors (ownership or role check failed)"""

    def __init__(self, message: str = "You do not have permission to access this resource", details: Dict[str, Any] = None):
        super().__init__(message, 403, details)

class ValidationError(APIError):
    """Malformed or missing input, with field-level detail"""

    def __init__(self, message: str = "Validation error", details: Dict[str, Any] = None):
        super().__init__(message, 422, details)

class NotFoundError(APIError):
    """Unknown event, ticket type, ticket, transaction or user"""

    def __init__(self, message: str = "Resource not found", details: Dict[str, Any] = None):
        super().__init__(message, 404, details)

class ConflictError(APIError):
    """Duplicate registration, insufficient quota or invalid state transition"""

    def __init__(self, message: str = "Conflict", details: Dict[str, Any] = None, data: Optional[Any] = None):
        super().__init__(message, 409, details, data)

class AlreadyScannedError(ConflictError):
    """Ticket already has a scan record; carries the existing scan"""

    def __init__(self, message: str = "Ticket has already been scanned", data: Optional[Any] = None):
        super().__init__(message, data=data)

class ExternalServiceError(APIError):
    """Identity or payment collaborator failure"""

    def __init__(self, message: str = "External service error", status_code: int = 502, details: Dict[str, Any] = None):
        super().__init__(message, status_code, details)


def error_body(message: str, errors: Optional[Dict[str, Any]] = None, data: Optional[Any] = None) -> dict:
    """Failure envelope shared by every handler"""
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    if data is not None:
        body["data"] = data
    return body

async def api_exception_handler(request: Request, exc: APIError):
    """Handle custom API exceptions with logging"""

    context = log_request_context(request)
    context.update({
        "error_type": exc.__class__.__name__,
        "status_code": exc.status_code,
    })

    if exc.status_code >= 500:
        logger.error(f"API Error: {exc.message}", extra={"context": context})
    else:
        logger.warning(f"API Error: {exc.message}", extra={"context": context})

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.details, exc.data)
    )

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Wrap framework HTTP errors (404 routes, 405) in the JSON envelope"""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None)
    )

async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert pydantic request validation into field-level errors"""
    errors: Dict[str, list] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        errors.setdefault(field, []).append(error.get("msg", "Invalid value"))

    logger.warning(f"Validation error on {request.method} {request.url.path}: {list(errors)}")

    return JSONResponse(
        status_code=422,
        content=error_body("Validation error", errors)
    )

async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""

    context = log_request_context(request)
    context.update({
        "error_type": exc.__class__.__name__,
    })

    logger.error(f"Unexpected error: {str(exc)}", extra={"context": context}, exc_info=True)

    return JSONResponse(
        status_code=500,
        content=error_body("Internal server error")
    )
