"""
Structured logging configuration with request ID and environment labels
"""
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

# Context variable for request ID
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get current request ID from context"""
    return request_id_var.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag every request with an ID and report how long it took"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_var.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.1f}"

        if elapsed_ms > 5000:
            logging.getLogger(__name__).warning(
                f"Slow request {request.method} {request.url.path}: {elapsed_ms:.0f}ms (request_id: {request_id})"
            )

        return response


class StructuredFormatter(logging.Formatter):
    """Formatter that stamps each record with request ID and environment"""

    DEFAULT_FORMAT = "%(asctime)s [%(env)s] [%(request_id)s] %(levelname)-8s %(name)s: %(message)s"

    def __init__(self, env: str = "dev", fmt: str = None, datefmt: str = None):
        self.env = env
        super().__init__(fmt=fmt or self.DEFAULT_FORMAT, datefmt=datefmt or "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        record.request_id = get_request_id() or "-"
        record.env = self.env
        return super().format(record)


def setup_logging(env: str = "dev", log_level: str = "INFO"):
    """
    Set up structured logging with request ID and environment labels

    Args:
        env: Environment name (dev, staging, prod, test)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    formatter = StructuredFormatter(env=env)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Third-party loggers are noisy at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    for noisy in ("sqlalchemy.engine", "httpx", "stripe", "anthropic", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger
