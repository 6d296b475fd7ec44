"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.api.routes import router
from src.api.middleware import setup_cors, setup_rate_limiting
from src.config import LOG_LEVEL, STORAGE_BACKEND, validate_config
from src.exceptions import (
    AuthenticationError,
    CompanionError,
    ConcurrentUpdateError,
    RecordNotFoundError,
    ValidationError,
)
from src.services.container import ServiceContainer, build_container

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO)
)

logger = logging.getLogger(__name__)


def status_for_error(exc: CompanionError) -> int:
    """HTTP status for a CompanionError"""
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, RecordNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, AuthenticationError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, ConcurrentUpdateError):
        return status.HTTP_409_CONFLICT
    if exc.retryable:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_api_application(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure FastAPI application

    Args:
        container: Prebuilt service container (tests). When omitted the
            lifespan builds one for STORAGE_BACKEND and closes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting API server...")
        owned = container is None
        if owned:
            validate_config()
            app.state.container = await build_container(STORAGE_BACKEND)
        else:
            app.state.container = container

        yield

        logger.info("Shutting down API server...")
        if owned:
            await app.state.container.close()
            logger.info("Service container closed")

    app = FastAPI(
        title="Companion Progress API",
        description="Engagement and progress engine for the wellness companion",
        version="1.0.0",
        lifespan=lifespan
    )

    # Setup middleware
    setup_cors(app)
    setup_rate_limiting(app)

    # Include routes
    app.include_router(router)

    @app.exception_handler(CompanionError)
    async def companion_error_handler(request: Request, exc: CompanionError):
        return JSONResponse(status_code=status_for_error(exc), content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "reason_code": "internal_error", "retryable": False}
        )

    logger.info("FastAPI application created")

    return app


app = create_api_application()
