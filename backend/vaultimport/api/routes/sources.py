"""Import source endpoints: connecting providers and browsing them."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.api.deps import get_owner_id
from vaultimport.db import get_db
from vaultimport.db.models import ImportSource
from vaultimport.schemas.import_source import (
    AuthorizedSourceCreate,
    CheckNewResponse,
    ConnectRequest,
    ConnectResponse,
    ImportSourceList,
    ImportSourceResponse,
    RemoteAlbumList,
    RemoteAlbumResponse,
)
from vaultimport.schemas.plan import PlanInfoResponse
from vaultimport.services.sources import SourceService

router = APIRouter(prefix="/import-sources", tags=["import-sources"])


def _build_source_response(source: ImportSource) -> ImportSourceResponse:
    """Build a response from a source row, leaving credentials behind."""
    return ImportSourceResponse(
        id=source.id,
        service_key=source.service.service_key,
        service_name=source.service.display_name,
        display_name=source.display_name,
        is_active=source.is_active,
        total_assets_synced=source.total_assets_synced or 0,
        last_sync_at=source.last_sync_at,
        created_at=source.created_at,
        disconnected_at=source.disconnected_at,
    )


# =============================================================================
# List and Connect
# =============================================================================


@router.get("", response_model=ImportSourceList)
async def list_import_sources(
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ImportSourceList:
    """List connected sources with the account's plan usage."""
    sources, plan_info = await SourceService(db).list_sources(owner_id)
    return ImportSourceList(
        items=[_build_source_response(s) for s in sources],
        plan=PlanInfoResponse.model_validate(plan_info),
    )


@router.post("/connect", response_model=ConnectResponse)
async def connect_source(
    data: ConnectRequest,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ConnectResponse:
    """Start connecting a provider.

    OAuth services answer with an ``auth_url`` to redirect to; archive
    services create the source straight away.
    """
    result = await SourceService(db).connect(
        owner_id,
        data.service_key,
        credentials=data.credentials,
        display_name=data.display_name,
    )
    if result.authorization is not None:
        return ConnectResponse(
            auth_url=result.authorization.auth_url,
            state=result.authorization.state,
        )
    return ConnectResponse(source=_build_source_response(result.source))


@router.post(
    "/authorized",
    response_model=ImportSourceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_authorized_source(
    data: AuthorizedSourceCreate,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ImportSourceResponse:
    """Record a source after the OAuth handshake produced credentials."""
    source = await SourceService(db).register_authorized_source(
        owner_id,
        data.service_key,
        data.credentials,
        display_name=data.display_name,
    )
    return _build_source_response(source)


@router.post("/{source_id}/disconnect", response_model=ImportSourceResponse)
async def disconnect_source(
    source_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ImportSourceResponse:
    """Disconnect a source. Imported assets and job history are kept."""
    source = await SourceService(db).disconnect(owner_id, source_id)
    return _build_source_response(source)


# =============================================================================
# Browsing
# =============================================================================


@router.get("/{source_id}/albums", response_model=RemoteAlbumList)
async def list_source_albums(
    source_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> RemoteAlbumList:
    albums = await SourceService(db).list_albums(owner_id, source_id)
    return RemoteAlbumList(items=[RemoteAlbumResponse.model_validate(a) for a in albums])


@router.get("/{source_id}/check-new", response_model=CheckNewResponse)
async def check_new_assets(
    source_id: str,
    album_ids: list[str] | None = Query(None, description="Restrict to these albums"),
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> CheckNewResponse:
    """Count remote assets that a new import would bring in."""
    check = await SourceService(db).check_new(owner_id, source_id, album_ids=album_ids)
    return CheckNewResponse(new_assets=check.new_assets, estimated_seconds=check.estimated_seconds)
