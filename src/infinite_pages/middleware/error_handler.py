"""
Error Handler Middleware
Sanitizes database and unexpected errors so responses never leak SQL, paths or credentials
"""
import logging
import re
from typing import Dict, Any
from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError

from ..exceptions import ErrorResponse
from ..logging_config import get_request_id

logger = logging.getLogger(__name__)


class ErrorSanitizer:
    """
    Removes file paths, SQL statements, connection strings and emails from
    messages before they reach a client
    """

    PATH_PATTERN = re.compile(r'(?:[A-Z]:\\|/)[^\s\'"<>|]+')
    SQL_PATTERN = re.compile(r'(SELECT|INSERT|UPDATE|DELETE|CREATE|DROP|ALTER|GRANT|REVOKE)\s+.*', re.IGNORECASE)
    CONNECTION_PATTERN = re.compile(r'(postgresql|postgres|sqlite|redis|rediss)(\+\w+)?://[^\s\'"<>]+')
    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    SECRET_PATTERN = re.compile(r'\b(sk|rk|whsec)_(live|test)?_?[A-Za-z0-9]+')

    SENSITIVE_KEYS = {'password', 'token', 'secret', 'api_key', 'connection_string', 'hashed_password'}
    MAX_LENGTH = 500

    @classmethod
    def sanitize_message(cls, message: str) -> str:
        if not message:
            return "An error occurred"

        # Connection strings first so the path pattern does not eat them
        message = cls.CONNECTION_PATTERN.sub('[REDACTED_CONNECTION]', message)
        message = cls.SECRET_PATTERN.sub('[REDACTED_SECRET]', message)
        message = cls.PATH_PATTERN.sub('[REDACTED_PATH]', message)
        message = cls.SQL_PATTERN.sub('SQL statement [REDACTED]', message)
        message = cls.EMAIL_PATTERN.sub('[REDACTED_EMAIL]', message)

        if len(message) > cls.MAX_LENGTH:
            message = message[:cls.MAX_LENGTH] + "... [truncated]"

        return message

    @classmethod
    def sanitize_details(cls, details: Dict[str, Any]) -> Dict[str, Any]:
        if not details:
            return {}

        sanitized = {}
        for key, value in details.items():
            if key.lower() in cls.SENSITIVE_KEYS:
                continue

            if isinstance(value, str):
                sanitized[key] = cls.sanitize_message(value)
            elif isinstance(value, dict):
                sanitized[key] = cls.sanitize_details(value)
            elif isinstance(value, (list, tuple)):
                sanitized[key] = [
                    cls.sanitize_message(item) if isinstance(item, str) else item
                    for item in value
                ]
            else:
                sanitized[key] = value

        return sanitized


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle database errors without exposing statements or schema"""
    request_id = get_request_id()

    logger.error(
        f"Database error (request_id: {request_id}): {type(exc).__name__}",
        exc_info=True,
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method
        }
    )

    if isinstance(exc, IntegrityError):
        error_message = "Database constraint violation. The operation could not be completed."
        error_code = "DATABASE_CONSTRAINT_ERROR"
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, OperationalError):
        error_message = "Database connection error. Please try again later."
        error_code = "DATABASE_CONNECTION_ERROR"
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        error_message = "A database error occurred. Please try again later."
        error_code = "DATABASE_ERROR"
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    error_response = ErrorResponse.create(
        message=error_message,
        code=error_code,
        status_code=status_code,
        request_id=request_id,
        details={"error_type": type(exc).__name__}
    )

    return JSONResponse(content=error_response, status_code=status_code)
