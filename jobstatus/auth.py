import logging
import secrets

from fastapi import HTTPException, Security
from fastapi.security.api_key import APIKeyHeader

from . import settings

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_api_key(api_key: str = Security(api_key_header)):
    """Guard for routes that write, delete or unschedule."""
    if api_key is None:
        raise HTTPException(status_code=401, detail="Missing API key")
    if not secrets.compare_digest(api_key, settings.API_KEY):
        logger.warning("rejected API key")
        raise HTTPException(status_code=403, detail="Invalid API key")
    return True
