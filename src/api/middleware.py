"""Rate limiting and CORS for the progress API"""
import logging
from fastapi import Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from src.config import CORS_ORIGINS

logger = logging.getLogger(__name__)

# Limits are declared per route; the key is the client IP
limiter = Limiter(key_func=get_remote_address)


def parse_origins(origins: str) -> list:
    return [origin.strip() for origin in origins.split(",") if origin.strip()]


def setup_cors(app, origins: str = CORS_ORIGINS):
    """Allow the presentation layer's origins"""
    allowed = parse_origins(origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info(f"CORS configured for origins: {allowed}")


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with the same reason_code/retryable body as every other API error"""
    logger.warning(f"Rate limit hit on {request.url.path} from {get_remote_address(request)}: {exc.detail}")
    response = JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "RateLimitExceeded",
            "reason_code": "rate_limited",
            "retryable": True,
            "message": f"Rate limit exceeded: {exc.detail}",
            "user_message": "Too many requests. Please slow down and try again.",
        }
    )
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)


def setup_rate_limiting(app):
    """Register the limiter and its 429 handler"""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    logger.info("Rate limiting configured (per-route limits, keyed by client IP)")
