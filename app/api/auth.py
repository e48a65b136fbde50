"""
Admin authentication dependency (X-Admin-API-Key header).
"""

import hmac

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from app.core.config import settings

API_KEY_HEADER = "X-Admin-API-Key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def get_admin_auth(api_key: str | None = Security(api_key_header)) -> bool:
    """
    Verify the admin API key.

    No key configured means admin is open (dev only); production refuses to run that way.

    Raises:
        HTTPException: 401 if the header is missing, 403 if the key is wrong
        RuntimeError: production without admin_api_key configured
    """
    if settings.app_env == "production" and not settings.admin_api_key:
        raise RuntimeError(
            "ADMIN_API_KEY must be set in production environment. "
            "Set ADMIN_API_KEY or use APP_ENV=dev for development."
        )

    if not settings.admin_api_key:
        return True

    if not api_key:
        raise HTTPException(status_code=401, detail=f"Missing API key. Provide {API_KEY_HEADER} header.")

    if not hmac.compare_digest(api_key, settings.admin_api_key):
        raise HTTPException(status_code=403, detail="Invalid API key.")

    return True
