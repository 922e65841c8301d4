"""FastAPI dependencies for injection into route handlers.

Member authentication is handled upstream of this service; the admin surface
is guarded by a shared key so bulk wallet operations are never public.
"""

import secrets

from fastapi import Header, HTTPException, status

from studiobook.core.config import settings


async def require_admin(x_admin_key: str | None = Header(default=None)) -> None:
    """Require the X-Admin-Key header to match the configured admin key."""
    if x_admin_key is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin key required")
    if not secrets.compare_digest(x_admin_key, settings.admin_api_key):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
