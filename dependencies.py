# dependencies.py
import secrets
from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader
from config import settings
from stats.service import PoolStatsService

API_KEY_NAME = "X-API-Key"
api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)


def get_stats_service(request: Request) -> PoolStatsService:
    """The service instance owned by the running application"""
    service = getattr(request.app.state, "stats_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pool statistics service is not running",
        )
    return service


async def verify_api_key(key: str = Security(api_key_header)):
    """
    Verifies the API key provided in the X-API-Key header.
    Raises HTTPException 401 if the key is invalid or missing.
    """
    if not settings.API_KEY:
        # No key configured: local development
        return True

    if key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API Key in X-API-Key header",
            headers={"WWW-Authenticate": "API Key"},
        )

    if not secrets.compare_digest(key, settings.API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API Key",
            headers={"WWW-Authenticate": "API Key"},
        )
    return True
