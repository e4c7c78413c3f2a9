"""
API token check for the paymaster write endpoints.

Deposits and registrations are sent from the relay wallet and spend its
funds, so POST /api/paymaster/deposit and POST /api/paymaster/register
require the X-API-Key header to match API_TOKEN. Transfer intake and all
read endpoints stay open: transfers are authorized by the sender's own
signature. Leaving API_TOKEN unset disables the check for local use.
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from .config import Settings, get_settings


# API key via header only
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_token(
    api_key: Optional[str] = Depends(api_key_header),
    settings: Settings = Depends(get_settings),
) -> bool:
    """
    Verify API token if configured.

    Raises:
        HTTPException: 401 if authentication fails
    """
    if not settings.api_token:
        return True

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API token required. Provide via X-API-Key header.",
            headers={"WWW-Authenticate": "X-API-Key"},
        )

    if api_key != settings.api_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API token",
            headers={"WWW-Authenticate": "X-API-Key"},
        )

    return True
