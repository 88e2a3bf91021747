"""Authentication and rate limiting helpers for the API."""

import secrets
import logging
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


async def verify_sync_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
) -> str:
    """Verify the sync job bearer token from the Authorization header.

    Args:
        credentials: HTTP Bearer credentials from the request.

    Returns:
        The verified token.

    Raises:
        HTTPException: If the token is missing, invalid or not configured.
    """
    expected_token = get_settings().sync_job_token
    if not expected_token:
        logger.error("SYNC_JOB_TOKEN environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    if not secrets.compare_digest(credentials.credentials, expected_token):
        logger.warning("Rejected sync job request with an invalid token")
        raise HTTPException(status_code=401, detail="Invalid bearer token")
    return credentials.credentials
