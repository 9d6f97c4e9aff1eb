from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, status


# PUBLIC_INTERFACE
async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, description="Authenticated user identifier"),
) -> str:
    """
    Resolve the caller's user id.

    Authentication happens upstream (gateway or auth middleware); it forwards the
    verified identity in the X-User-Id header.

    Raises:
        HTTPException(401) if the header is missing or blank.
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return x_user_id.strip()
