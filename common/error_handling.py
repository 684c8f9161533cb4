"""
Error taxonomy and FastAPI handlers with the client-facing response shape
"""
from typing import Optional, Dict, Any
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import traceback

logger = logging.getLogger(__name__)

class ErrorCodes:
    """Standard error codes"""
    # Authentication & Authorization
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    INVALID_ACCESS_CODE = "INVALID_ACCESS_CODE"
    INVALID_ACCESS_TOKEN = "INVALID_ACCESS_TOKEN"

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    UNSUPPORTED_MEDIA_TYPE = "UNSUPPORTED_MEDIA_TYPE"

    # Business Logic
    NOT_FOUND = "NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    REPLY_UNAVAILABLE = "REPLY_UNAVAILABLE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # System Errors
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    DATABASE_ERROR = "DATABASE_ERROR"
    CIRCUIT_BREAKER_OPEN = "CIRCUIT_BREAKER_OPEN"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    SESSION_KEY_EXHAUSTED = "SESSION_KEY_EXHAUSTED"

    # External Service Errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"

# Client-facing messages shared by every cause of the same failure kind
GENERIC_CODE_ERROR = "Invalid or expired code."
GENERIC_UNAVAILABLE = "Service temporarily unavailable. Please try again."
GENERIC_RATE_LIMITED = "Too many requests. Please wait a minute."

class BusinessLogicError(Exception):
    """Client-caused failure; the message is safe to show"""
    def __init__(self, code: str, message: str, field: str = None, context: Dict[str, Any] = None):
        self.code = code
        self.message = message
        self.field = field
        self.context = context or {}
        super().__init__(message)

class ServiceError(Exception):
    """Dependency or internal failure; the message is a non-sensitive summary"""
    def __init__(self, code: str, message: str, original_error: Exception = None):
        self.code = code
        self.message = message
        self.original_error = original_error
        self.context: Dict[str, Any] = {}
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_SERVICE_CODES

class RateLimitExceeded(BusinessLogicError):
    def __init__(self, message: str = GENERIC_RATE_LIMITED, retry_after: int = 0):
        super().__init__(ErrorCodes.RATE_LIMIT_EXCEEDED, message)
        self.retry_after = retry_after

class DependencyUnavailable(ServiceError):
    def __init__(self, original_error: Exception = None, message: str = GENERIC_UNAVAILABLE):
        super().__init__(ErrorCodes.SERVICE_UNAVAILABLE, message, original_error)

BUSINESS_STATUS_CODES = {
    ErrorCodes.VERIFICATION_FAILED: 400,
    ErrorCodes.INVALID_ACCESS_CODE: 400,
    ErrorCodes.INVALID_ACCESS_TOKEN: 400,
    ErrorCodes.VALIDATION_ERROR: 400,
    ErrorCodes.PAYLOAD_TOO_LARGE: 400,
    ErrorCodes.UNSUPPORTED_MEDIA_TYPE: 415,
    ErrorCodes.SESSION_NOT_FOUND: 404,
    ErrorCodes.REPLY_UNAVAILABLE: 400,
    ErrorCodes.RATE_LIMIT_EXCEEDED: 429,
}

SERVICE_STATUS_CODES = {
    ErrorCodes.SERVICE_UNAVAILABLE: 503,
    ErrorCodes.DATABASE_ERROR: 503,
    ErrorCodes.CIRCUIT_BREAKER_OPEN: 503,
    ErrorCodes.CONCURRENCY_CONFLICT: 503,
    ErrorCodes.SESSION_KEY_EXHAUSTED: 503,
    ErrorCodes.TIMEOUT_ERROR: 503,
    ErrorCodes.EXTERNAL_SERVICE_ERROR: 502,
    ErrorCodes.CONFIGURATION_ERROR: 500,
}

RETRYABLE_SERVICE_CODES = {
    code for code, status in SERVICE_STATUS_CODES.items() if status == 503
}

# Failures on these paths also carry {"verified": false}
VERIFICATION_PATHS = {"/verify-payment"}

def _response_extra(request: Request, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    extra = dict(context or {})
    if request.url.path in VERIFICATION_PATHS:
        extra.setdefault("verified", False)
    return extra

def create_error_response(
    error_code: str,
    message: str,
    status_code: int = 500,
    extra: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Create the error body: {"error": message, "code": code, **extra}"""
    content = dict(extra or {})
    content["error"] = message
    content["code"] = error_code
    return JSONResponse(status_code=status_code, content=content, headers=headers)

async def business_logic_exception_handler(request: Request, exc: BusinessLogicError):
    """Handle business logic exceptions"""
    status_code = BUSINESS_STATUS_CODES.get(exc.code, 400)

    logger.warning(f"Business logic error: {exc.code} on {request.url.path}", extra={
        "error_code": exc.code,
        "field": exc.field,
    })

    headers = None
    if isinstance(exc, RateLimitExceeded) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}

    return create_error_response(
        error_code=exc.code,
        message=exc.message,
        status_code=status_code,
        extra=_response_extra(request, exc.context),
        headers=headers,
    )

async def service_exception_handler(request: Request, exc: ServiceError):
    """Handle service-level exceptions"""
    status_code = SERVICE_STATUS_CODES.get(exc.code, 500)

    logger.error(f"Service error: {exc.code} - {exc.message} on {request.url.path}", extra={
        "error_code": exc.code,
        "original_error": repr(exc.original_error) if exc.original_error else None,
    })

    return create_error_response(
        error_code=exc.code,
        message=exc.message,
        status_code=status_code,
        extra=_response_extra(request, exc.context),
    )

# The location of these errors is a byte offset, not a field
UNDECODABLE_BODY_ERRORS = {"json_invalid"}

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request decoding failures"""
    first_error = exc.errors()[0] if exc.errors() else {}
    if first_error.get("type") in UNDECODABLE_BODY_ERRORS:
        field = ""
    else:
        field = ".".join(str(loc) for loc in first_error.get("loc", []) if loc != "body")
    message = f"Invalid field '{field}'." if field else "Invalid request."

    logger.warning(f"Validation error on field {field or '<body>'}: {first_error.get('msg')}")

    return create_error_response(
        error_code=ErrorCodes.VALIDATION_ERROR,
        message=message,
        status_code=400,
        extra=_response_extra(request),
    )

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle framework HTTP exceptions (404 route, 405 method)"""
    status_to_code = {
        404: ErrorCodes.NOT_FOUND,
        429: ErrorCodes.RATE_LIMIT_EXCEEDED,
        503: ErrorCodes.SERVICE_UNAVAILABLE,
    }
    error_code = status_to_code.get(exc.status_code, ErrorCodes.VALIDATION_ERROR if exc.status_code < 500
                                    else ErrorCodes.INTERNAL_SERVER_ERROR)

    logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")

    return create_error_response(
        error_code=error_code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )

async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unexpected error on {request.url.path}: {exc!r}", extra={
        "traceback": traceback.format_exc()
    })

    # Don't expose internal error details
    return create_error_response(
        error_code=ErrorCodes.INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
        extra=_response_extra(request),
    )

def add_error_handlers(app):
    """Add all error handlers to FastAPI app"""
    app.add_exception_handler(BusinessLogicError, business_logic_exception_handler)
    app.add_exception_handler(ServiceError, service_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
