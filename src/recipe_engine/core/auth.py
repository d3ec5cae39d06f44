"""Bearer-token check for the operator control surface."""

import logging
import secrets
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from recipe_engine.core.config import settings
from recipe_engine.core.errors import UnauthorizedError

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


async def require_operator(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> None:
    """FastAPI dependency: validate the bearer token when ADMIN_TOKEN is set."""
    if not settings.ADMIN_TOKEN:
        return

    if not credentials or not credentials.credentials:
        raise UnauthorizedError("Authentication required")

    if not secrets.compare_digest(credentials.credentials, settings.ADMIN_TOKEN):
        logger.warning("Rejected request with invalid operator token")
        raise UnauthorizedError("Invalid token")
