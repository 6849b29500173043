"""Shared API dependencies."""

import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from settler.config import settings

admin_key_scheme = APIKeyHeader(name="X-Admin-Key", auto_error=False)


def require_admin(api_key: str | None = Depends(admin_key_scheme)) -> str:
    """Validate the admin API key header."""
    if not settings.admin_api_key or not api_key or not secrets.compare_digest(
        api_key, settings.admin_api_key
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin key",
        )
    return api_key
