"""
Domain exceptions and exception handlers with request ID support
Standardized error response format: { code, message, status_code, details?, request_id }
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Optional, Dict, Any

from .logging_config import get_request_id

logger = logging.getLogger(__name__)


ERROR_CODE_MAP = {
    400: "BAD_REQUEST",
    401: "AUTH_ERROR",
    402: "PAYMENT_REQUIRED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    406: "NOT_ACCEPTABLE",
    409: "CONFLICT",
    413: "REQUEST_TOO_LARGE",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


class InfinitePagesError(Exception):
    """Base class for errors raised by services and mapped to HTTP responses"""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "BAD_REQUEST"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = details or {}


class NotFoundError(InfinitePagesError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class InsufficientCreditsError(InfinitePagesError):
    """Raised when a user cannot afford an operation"""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "INSUFFICIENT_CREDITS"

    def __init__(self, required: int, available: int, message: Optional[str] = None):
        super().__init__(
            message or f"Insufficient credits ({required} credits required, {available} available)",
            details={"required": required, "available": available},
        )
        self.required = required
        self.available = available


class PlanLimitExceededError(InfinitePagesError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "PLAN_LIMIT_EXCEEDED"


class SubscriptionRequiredError(InfinitePagesError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "SUBSCRIPTION_REQUIRED"


class ContentPolicyError(InfinitePagesError):
    """Raised when input or generated content fails moderation"""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "CONTENT_BLOCKED"


class ConflictError(InfinitePagesError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class PayoutError(InfinitePagesError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "PAYOUT_ERROR"


class PaymentProviderError(InfinitePagesError):
    """Stripe is unreachable, misconfigured or rejected the call"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "PAYMENT_PROVIDER_ERROR"


class AIServiceError(InfinitePagesError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "AI_SERVICE_ERROR"


class AIRateLimitError(AIServiceError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "AI_RATE_LIMITED"


class AIAuthenticationError(AIServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "AI_AUTH_ERROR"


class AIInvalidRequestError(AIServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "AI_INVALID_REQUEST"


class AIUnavailableError(AIServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "AI_UNAVAILABLE"


class ErrorResponse:
    """
    Standard error response format

    Schema: { code, message, status_code, details?, request_id }
    """

    @staticmethod
    def create(
        message: str,
        code: str,
        status_code: int,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> dict:
        """
        Create standardized error response

        Args:
            message: Human-readable error message
            code: Error code (e.g., "VALIDATION_ERROR", "AUTH_ERROR", "INSUFFICIENT_CREDITS")
            status_code: HTTP status code
            request_id: Request ID from context (auto-fetched if None)
            details: Optional additional error details

        Returns:
            Dictionary with error details
        """
        if request_id is None:
            request_id = get_request_id()

        response = {
            "code": code,
            "message": message,
            "status_code": status_code,
        }
        if request_id:
            response["request_id"] = request_id
        if details:
            response["details"] = details
        return response


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with request ID"""
    request_id = get_request_id()
    error_code = ERROR_CODE_MAP.get(exc.status_code, "HTTP_ERROR")

    detail = exc.detail
    error_message = str(detail) if detail else f"HTTP {exc.status_code} error"
    error_details = None

    # Routes may raise with a dict detail carrying an explicit code and extra fields
    if isinstance(detail, dict):
        error_message = detail.get("message", str(detail))
        error_code = detail.get("code", error_code)
        error_details = {k: v for k, v in detail.items() if k not in ["message", "code"]} or None

    error_response = ErrorResponse.create(
        message=error_message,
        code=error_code,
        status_code=exc.status_code,
        request_id=request_id,
        details=error_details
    )

    logger.warning(
        f"HTTP {exc.status_code}: {error_message}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response,
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation exceptions with field-level messages"""
    request_id = get_request_id()

    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", []) if part != "body"),
            "message": err.get("msg", "Validation error"),
            "type": err.get("type", "value_error"),
        }
        for err in exc.errors()
    ]
    detail = "; ".join(f"{err['field']}: {err['message']}" for err in errors)

    logger.warning(
        f"Validation error: {detail}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse.create(
            message=f"Validation error: {detail}",
            code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            request_id=request_id,
            details={"errors": errors}
        )
    )


async def domain_exception_handler(request: Request, exc: InfinitePagesError) -> JSONResponse:
    """Handle errors raised by the service layer"""
    request_id = get_request_id()

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{type(exc).__name__} ({exc.code}): {exc.message}",
        extra={"request_id": request_id, "path": request.url.path}
    )

    headers = None
    if exc.status_code == status.HTTP_429_TOO_MANY_REQUESTS and "retry_after" in exc.details:
        headers = {"Retry-After": str(exc.details["retry_after"])}

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse.create(
            message=exc.message,
            code=exc.code,
            status_code=exc.status_code,
            request_id=request_id,
            details=exc.details or None
        ),
        headers=headers
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions with request ID"""
    request_id = get_request_id()

    # Internal details are only exposed in development
    from .config import config
    from .middleware.error_handler import ErrorSanitizer
    error_message = "Internal server error"
    error_details = None

    if config.is_dev:
        error_message = f"Internal server error: {ErrorSanitizer.sanitize_message(str(exc))}"
        error_details = {"exception_type": type(exc).__name__}

    logger.error(
        f"Unhandled exception: {str(exc)}",
        exc_info=True,
        extra={"request_id": request_id, "path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse.create(
            message=error_message,
            code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
            details=error_details
        )
    )
