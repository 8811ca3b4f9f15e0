"""Service catalog endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.db import get_db
from vaultimport.schemas.import_source import ImportServiceList, ImportServiceResponse
from vaultimport.services.registry import ServiceRegistry

router = APIRouter(prefix="/import-services", tags=["import-services"])


@router.get("", response_model=ImportServiceList)
async def list_import_services(db: AsyncSession = Depends(get_db)) -> ImportServiceList:
    """List every provider the vault knows about, including unavailable ones."""
    services = await ServiceRegistry(db).list_services()
    return ImportServiceList(
        items=[ImportServiceResponse.model_validate(s) for s in services]
    )
