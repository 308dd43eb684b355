"""
Infinite Pages API application
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import config
from .logging_config import setup_logging, RequestIDMiddleware
from .exceptions import (
    InfinitePagesError,
    http_exception_handler,
    validation_exception_handler,
    domain_exception_handler,
    general_exception_handler,
)
from .middleware.error_handler import database_error_handler
from .middleware.rate_limit import RateLimitMiddleware
from .auth_routes import router as auth_router
from .story_routes import router as story_router
from .credit_routes import router as credit_router
from .billing_routes import router as billing_router
from .webhook_routes import router as webhook_router
from .creator_routes import router as creator_router
from .admin_routes import router as admin_router
from .tracking_routes import router as tracking_router
from .health_routes import router as health_router

setup_logging(config.ENV, config.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Infinite Pages API starting (env: {config.ENV}, version: {config.BUILD_VERSION})")

    if config.is_dev or config.is_test:
        from .db.engine import init_db
        init_db()

    if config.ENABLE_SCHEDULER:
        from .services.scheduled_jobs import start_scheduler
        start_scheduler()

    yield

    if config.ENABLE_SCHEDULER:
        from .services.scheduled_jobs import stop_scheduler
        stop_scheduler()
    logger.info("Infinite Pages API stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Infinite Pages API", version=__version__, lifespan=lifespan)

    # Added innermost first: request ID wraps CORS, which wraps rate limiting
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset-After",
            "Retry-After",
        ],
    )
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(InfinitePagesError, domain_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(story_router)
    app.include_router(credit_router)
    app.include_router(billing_router)
    app.include_router(webhook_router)
    app.include_router(creator_router)
    app.include_router(admin_router)
    app.include_router(tracking_router)

    @app.get("/")
    async def root():
        return {"message": "Infinite Pages API", "status": "running"}

    return app


app = create_app()
