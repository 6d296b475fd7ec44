"""API key authentication for calling clients

User ids are issued by the identity provider and arrive in the path. The
bearer key only says which client is calling.
"""
import os
import logging
from typing import List
from fastapi import HTTPException, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from src.config import API_KEYS
from src.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_api_keys() -> List[str]:
    """Comma separated client keys; read per call so a rotated key applies without a restart"""
    raw = os.getenv("API_KEYS", API_KEYS)
    return [key.strip() for key in raw.split(",") if key.strip()]


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials = Security(security)
) -> str:
    """
    Accept a known client key

    Raises:
        HTTPException: 503 while no keys are configured
        AuthenticationError: Unknown key (401 through the CompanionError handler)
    """
    valid_keys = get_api_keys()
    if not valid_keys:
        logger.error("API_KEYS is empty, rejecting all requests")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API authentication not configured"
        )

    client_key = credentials.credentials
    if client_key not in valid_keys:
        raise AuthenticationError(
            "Unknown API key",
            operation="verify_api_key",
            context={"key_prefix": client_key[:4]}
        )

    return client_key
