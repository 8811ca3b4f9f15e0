"""Plan usage endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.api.deps import get_owner_id
from vaultimport.db import get_db
from vaultimport.schemas.plan import PlanInfoResponse
from vaultimport.services.plan_guard import PlanGuard

router = APIRouter(prefix="/plan", tags=["plan"])


@router.get("", response_model=PlanInfoResponse)
async def get_plan_info(
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> PlanInfoResponse:
    """Current photo count against the account's plan limit."""
    info = await PlanGuard(db).get_plan_info(owner_id)
    return PlanInfoResponse.model_validate(info)
