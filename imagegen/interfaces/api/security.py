# imagegen/interfaces/api/security.py
"""Optional API key check and per-client rate limiting.

Authentication is off unless API_AUTH_KEY is set. Read-only catalog
endpoints stay public; anything that spends upstream quota or mutates
state requires the key.
"""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.util import get_remote_address

from imagegen.config import settings

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

limiter = Limiter(key_func=get_remote_address)


def verify_api_key(api_key: Annotated[str | None, Depends(api_key_header)]) -> str:
    """Check the X-API-Key header against API_AUTH_KEY.

    Raises:
        HTTPException: 401 if the header is missing, 403 if it is wrong.
    """
    expected = settings.api_auth_key
    if not expected:
        return "auth_disabled"

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Include X-API-Key header.",
        )
    if not secrets.compare_digest(api_key, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key.")
    return api_key


ApiKey = Annotated[str, Depends(verify_api_key)]


def get_rate_limit_string() -> str:
    return f"{settings.api_rate_limit}/minute"


def get_generate_rate_limit_string() -> str:
    """Generation hits the rate-limited upstream; a quarter of the general budget."""
    return f"{max(1, settings.api_rate_limit // 4)}/minute"
