"""
verify.py
---------
Purpose:
    API key verification for the operator control surface.

Notes:
    - Accepts the key in `X-API-Key` or as `Authorization: Bearer <key>`.
    - Missing key -> 401, wrong key -> 403.
    - Comparison is constant-time.
"""

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
_bearer = HTTPBearer(auto_error=False)


def verify_api_key(provided: str | None) -> str:
    if not provided:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    expected = settings.API_KEY
    if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
    return provided


def require_api_key(
    api_key: str | None = Depends(_api_key_header),
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> str:
    return verify_api_key(api_key or (credentials.credentials if credentials else None))
