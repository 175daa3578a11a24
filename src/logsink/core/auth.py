"""
Bearer credential handling.

Application tokens are only extracted here; checking them against the
per-application secret is the worker's job. Admin endpoints are checked
against the configured admin token.
"""

import secrets
from typing import Optional

import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import get_settings
from .exceptions import AuthenticationError

logger = structlog.get_logger(__name__)
security = HTTPBearer(auto_error=False)


def mask_token(token: str) -> str:
    """Loggable prefix of a token."""
    return token[:8] + "..." if len(token) >= 8 else "***"


def extract_bearer_token(credentials: Optional[HTTPAuthorizationCredentials]) -> str:
    """Token of a ``Bearer`` Authorization header, or AuthenticationError."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Missing/non-bearer authorization")
    return credentials.credentials


async def authenticate_admin_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Authenticate bearer token against the configured admin token.

    An empty admin token disables the admin endpoints.
    """
    token_value = extract_bearer_token(credentials).strip()

    admin_token = get_settings().security.admin_token
    if not admin_token:
        logger.warning("Admin access attempted but no admin token configured")
        raise AuthenticationError("Admin access disabled")

    if not secrets.compare_digest(token_value.encode("utf-8"), admin_token.encode("utf-8")):
        logger.warning("Admin authentication failed", token=mask_token(token_value))
        raise AuthenticationError("Invalid admin token")

    logger.debug("Admin token authenticated", token=mask_token(token_value))
    return token_value
