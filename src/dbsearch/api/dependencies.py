from typing import Optional

from fastapi import Header, HTTPException, Query, Request, status

from ..config import settings
from ..plugin import DbSearchPlugin


def get_plugin(request: Request) -> DbSearchPlugin:
    plugin = getattr(request.app.state, "plugin", None)
    if plugin is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search plugin is not initialized",
        )
    return plugin


async def verify_admin(
    x_admin_key: Optional[str] = Header(None, alias="x-admin-key"),
    key: Optional[str] = Query(None),
) -> None:
    """
    Verify the request is from an admin using the configured API key.
    Checks header first, then query param.
    """
    expected_key = settings.admin_api_key.get_secret_value() if settings.admin_api_key else None

    if not expected_key:
        # No key configured means admin access is disabled
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access is not configured (DBSEARCH_ADMIN_API_KEY missing)",
        )

    provided_key = x_admin_key or key

    if not provided_key or provided_key != expected_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing admin API key",
        )
