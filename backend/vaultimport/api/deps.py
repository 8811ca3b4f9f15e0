"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Header, HTTPException

OWNER_HEADER = "X-Owner-Id"


async def get_owner_id(
    x_owner_id: str | None = Header(None, alias=OWNER_HEADER, max_length=64),
) -> str:
    """Owner id set by the upstream auth gateway.

    Raises:
        HTTPException: 401 when the header is missing or blank.
    """
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=401, detail=f"Missing {OWNER_HEADER} header")
    return x_owner_id.strip()
