"""Whole-vault duplicate detection and duplicate group resolution."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.core.config import settings
from vaultimport.core.exceptions import (
    LeaseLostError,
    StateConflictError,
    StorageFailureError,
    ValidationError,
    VaultImportError,
)
from vaultimport.core.logging import get_logger
from vaultimport.db.base import utc_now
from vaultimport.db.models import (
    ACTIVE_SCAN_STATUSES,
    Asset,
    DedupScanJob,
    DedupScanStatus,
    DuplicateGroup,
    DuplicateGroupMember,
    DuplicateGroupStatus,
    DuplicateGroupType,
    ImportService,
    ImportSource,
    RequestedAction,
    ResolveAction,
)
from vaultimport.services import leases
from vaultimport.services.ownership import get_owned
from vaultimport.services.similarity import (
    HashedItem,
    PerceptualHashOracle,
    SimilarityOracle,
    connected_components,
    find_similar_pairs,
)
from vaultimport.storage import VaultStorage, get_vault_storage
from vaultimport.utils.fingerprint import compute_bytes_fingerprint, metadata_fingerprint

logger = get_logger(__name__)

# Assets fingerprinted between progress writes
SCAN_BATCH_SIZE = 100

TERMINAL_SCAN_STATUSES = (
    DedupScanStatus.COMPLETED,
    DedupScanStatus.FAILED,
    DedupScanStatus.CANCELLED,
)


@dataclass
class ScannedAsset:
    """What grouping needs to know about one live asset."""

    id: str
    fingerprint: str | None
    perceptual_hash: str | None
    width: int | None
    height: int | None
    created_at: datetime

    @property
    def primary_rank(self) -> tuple:
        # Highest resolution, then oldest, then lowest id
        return (-((self.width or 0) * (self.height or 0)), self.created_at, self.id)


@dataclass
class PlannedGroup:
    group_type: DuplicateGroupType
    group_key: str
    member_ids: list[str]
    primary_id: str
    scores: dict[str, float]


def plan_groups(
    assets: list[ScannedAsset],
    threshold: float,
    oracle: SimilarityOracle | None = None,
) -> list[PlannedGroup]:
    """Build exact and similar groups from scanned assets.

    Exact groups share a fingerprint. Similar groups are connected
    components of the pairs the oracle scores above ``threshold``.
    """
    oracle = oracle or PerceptualHashOracle()
    by_id = {asset.id: asset for asset in assets}
    groups: list[PlannedGroup] = []

    by_fingerprint: dict[str, list[ScannedAsset]] = {}
    for asset in assets:
        if asset.fingerprint:
            by_fingerprint.setdefault(asset.fingerprint, []).append(asset)

    for fingerprint, members in sorted(by_fingerprint.items()):
        if len(members) < 2:
            continue
        primary = min(members, key=lambda a: a.primary_rank)
        groups.append(
            PlannedGroup(
                group_type=DuplicateGroupType.EXACT,
                group_key=fingerprint,
                member_ids=sorted(a.id for a in members),
                primary_id=primary.id,
                scores={a.id: 1.0 for a in members},
            )
        )

    hashed = [
        HashedItem(a.id, a.perceptual_hash, a.fingerprint)
        for a in sorted(assets, key=lambda a: a.id)
        if a.perceptual_hash
    ]
    pairs = find_similar_pairs(hashed, threshold, oracle)
    components = connected_components(
        (item.item_id for item in hashed),
        ((pair.left, pair.right) for pair in pairs),
    )
    for component in components:
        members = [by_id[asset_id] for asset_id in component]
        primary = min(members, key=lambda a: a.primary_rank)
        scores = {}
        for member in members:
            if member.id == primary.id:
                scores[member.id] = 1.0
            else:
                score = oracle.score(primary.perceptual_hash, member.perceptual_hash)
                scores[member.id] = score if score is not None else 0.0
        groups.append(
            PlannedGroup(
                group_type=DuplicateGroupType.SIMILAR,
                group_key=primary.id,
                member_ids=component,
                primary_id=primary.id,
                scores=scores,
            )
        )
    return groups


class DedupService:
    """Caller-facing dedup control: scans and group resolution."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def start_scan(
        self,
        owner_id: str,
        similarity_threshold: float | None = None,
    ) -> DedupScanJob:
        """Queue a scan of the owner's whole vault.

        Raises:
            ValidationError: Threshold outside (0, 1].
            StateConflictError: A scan is already running for the owner.
        """
        threshold = settings.similarity_threshold if similarity_threshold is None else similarity_threshold
        if not 0 < threshold <= 1:
            raise ValidationError("similarity_threshold must be in (0, 1]")

        scan = DedupScanJob(
            owner_id=owner_id,
            status=DedupScanStatus.PENDING,
            similarity_threshold=threshold,
            requested_action=RequestedAction.NONE,
        )
        self.db.add(scan)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise StateConflictError("A duplicate scan is already running for this account") from e

        logger.info("dedup_scan_created", scan_id=scan.id, owner_id=owner_id, threshold=threshold)
        return scan

    async def get_status(self, owner_id: str, scan_id: str) -> DedupScanJob:
        return await get_owned(self.db, DedupScanJob, scan_id, owner_id, populate_existing=True)

    async def list_scans(self, owner_id: str, limit: int = 20) -> list[DedupScanJob]:
        result = await self.db.execute(
            select(DedupScanJob)
            .where(DedupScanJob.owner_id == owner_id)
            .order_by(DedupScanJob.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def cancel_scan(self, owner_id: str, scan_id: str) -> DedupScanJob:
        """Cancel a scan; a running one stops at its next batch boundary.

        Raises:
            StateConflictError: The scan already finished.
        """
        scan = await self.get_status(owner_id, scan_id)
        if scan.status in TERMINAL_SCAN_STATUSES:
            raise StateConflictError(f"Scan {scan_id} is already {scan.status.value}")

        result = await self.db.execute(
            update(DedupScanJob)
            .where(
                DedupScanJob.id == scan_id,
                DedupScanJob.status == DedupScanStatus.PENDING,
                DedupScanJob.lease_owner.is_(None),
            )
            .values(status=DedupScanStatus.CANCELLED, completed_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.execute(
                update(DedupScanJob)
                .where(
                    DedupScanJob.id == scan_id,
                    DedupScanJob.status.in_(ACTIVE_SCAN_STATUSES),
                )
                .values(requested_action=RequestedAction.CANCEL)
                .execution_options(synchronize_session=False)
            )

        logger.info("dedup_scan_cancel_requested", scan_id=scan_id, owner_id=owner_id)
        return await self.get_status(owner_id, scan_id)

    async def get_groups(
        self,
        owner_id: str,
        *,
        status: DuplicateGroupStatus | None = None,
        group_type: DuplicateGroupType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DuplicateGroup], int]:
        """Duplicate groups for an owner with the unpaginated total."""
        conditions = [DuplicateGroup.owner_id == owner_id]
        if status:
            conditions.append(DuplicateGroup.status == status)
        if group_type:
            conditions.append(DuplicateGroup.group_type == group_type)

        total = await self.db.scalar(select(func.count(DuplicateGroup.id)).where(*conditions))
        result = await self.db.execute(
            select(DuplicateGroup)
            .where(*conditions)
            .order_by(DuplicateGroup.created_at.desc(), DuplicateGroup.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().unique().all()), total or 0

    async def get_group(self, owner_id: str, group_id: str) -> DuplicateGroup:
        return await get_owned(self.db, DuplicateGroup, group_id, owner_id, populate_existing=True)

    async def resolve_group(
        self,
        owner_id: str,
        group_id: str,
        action: ResolveAction,
        keep_asset_id: str | None = None,
    ) -> DuplicateGroup:
        """Resolve a group, tombstoning members according to ``action``.

        Repeating the resolution that was already applied returns the
        group unchanged; any other action on a resolved group is a
        conflict.

        Raises:
            ValidationError: ``keep_asset_id`` is not a live member.
            StateConflictError: The group was resolved differently.
        """
        group = await self.get_group(owner_id, group_id)

        if group.status == DuplicateGroupStatus.RESOLVED:
            same_keep = keep_asset_id is None or keep_asset_id == group.kept_asset_id
            if group.resolution_action == action and same_keep:
                return group
            raise StateConflictError(
                f"Group {group_id} was already resolved with {group.resolution_action.value}"
            )

        member_ids = [member.asset_id for member in group.members]
        # Members can be tombstoned after the scan by rollback or another group
        live = await self._live_members(owner_id, member_ids)
        kept: str | None = None
        if action == ResolveAction.KEEP_ONE:
            if keep_asset_id is not None:
                if keep_asset_id not in member_ids:
                    raise ValidationError(
                        f"Asset {keep_asset_id} is not a member of group {group_id}"
                    )
                if keep_asset_id not in live:
                    raise ValidationError(f"Asset {keep_asset_id} has already been deleted")
                kept = keep_asset_id
            elif live:
                kept = min(live.values(), key=lambda a: a.primary_rank).id
            to_delete = [asset_id for asset_id in live if asset_id != kept]
        elif action == ResolveAction.DELETE_ALL:
            to_delete = list(live)
        else:
            to_delete = []

        now = utc_now()
        claimed = await self.db.execute(
            update(DuplicateGroup)
            .where(
                DuplicateGroup.id == group_id,
                DuplicateGroup.status == DuplicateGroupStatus.PENDING,
            )
            .values(
                status=DuplicateGroupStatus.RESOLVED,
                resolution_action=action,
                kept_asset_id=kept,
                resolved_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise StateConflictError(f"Group {group_id} was resolved concurrently")

        deleted = 0
        if to_delete:
            result = await self.db.execute(
                update(Asset)
                .where(
                    Asset.id.in_(to_delete),
                    Asset.owner_id == owner_id,
                    Asset.deleted_at.is_(None),
                )
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount or 0

        await self.db.execute(
            update(DuplicateGroup)
            .where(DuplicateGroup.id == group_id)
            .values(deleted_count=deleted)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()

        logger.info(
            "duplicate_group_resolved",
            group_id=group_id,
            owner_id=owner_id,
            action=action.value,
            deleted=deleted,
        )
        return await self.get_group(owner_id, group_id)

    async def _live_members(self, owner_id: str, asset_ids: list[str]) -> dict[str, ScannedAsset]:
        result = await self.db.execute(
            select(
                Asset.id,
                Asset.fingerprint,
                Asset.perceptual_hash,
                Asset.width,
                Asset.height,
                Asset.created_at,
            ).where(
                Asset.id.in_(asset_ids),
                Asset.owner_id == owner_id,
                Asset.deleted_at.is_(None),
            )
        )
        return {row.id: ScannedAsset(*row) for row in result.all()}


class DedupScanner:
    """Runs a leased scan: fingerprint, group, replace pending groups."""

    def __init__(
        self,
        db: AsyncSession,
        worker_id: str,
        *,
        storage: VaultStorage | None = None,
        oracle: SimilarityOracle | None = None,
    ):
        self.db = db
        self.worker_id = worker_id
        self.storage = storage or get_vault_storage()
        self.oracle = oracle or PerceptualHashOracle()

    async def run(self, scan_id: str) -> DedupScanStatus | None:
        """Run a scan this worker has claimed; errors are recorded on the scan."""
        scan = await self.db.get(DedupScanJob, scan_id, populate_existing=True)
        if scan is None or scan.lease_owner != self.worker_id:
            logger.warning("dedup_scan_not_leased", scan_id=scan_id, worker_id=self.worker_id)
            return None

        try:
            status = await self._run(scan)
        except LeaseLostError:
            await self.db.rollback()
            logger.warning("dedup_scan_lease_lost", scan_id=scan_id, worker_id=self.worker_id)
            return None
        except VaultImportError as e:
            await self.fail(scan_id, e.code, e.message)
            return DedupScanStatus.FAILED

        logger.info("dedup_scan_stopped", scan_id=scan_id, status=status.value)
        return status

    async def fail(self, scan_id: str, code: str, message: str) -> None:
        await self.db.rollback()
        await self._finish(
            scan_id,
            DedupScanStatus.FAILED,
            completed_at=utc_now(),
            error_code=code,
            error_message=message,
        )
        logger.error("dedup_scan_failed", scan_id=scan_id, error_code=code, error=message)

    async def _run(self, scan: DedupScanJob) -> DedupScanStatus:
        await leases.guarded_update(
            self.db,
            DedupScanJob,
            scan.id,
            self.worker_id,
            status=DedupScanStatus.SCANNING,
            started_at=scan.started_at or utc_now(),
            scanned_assets=0,
        )
        await self.db.commit()

        rows = (
            await self.db.execute(
                select(Asset, ImportService.service_key)
                .outerjoin(ImportSource, Asset.source_id == ImportSource.id)
                .outerjoin(ImportService, ImportSource.service_id == ImportService.id)
                .where(Asset.owner_id == scan.owner_id, Asset.deleted_at.is_(None))
                .order_by(Asset.created_at, Asset.id)
            )
        ).all()
        await leases.guarded_update(
            self.db, DedupScanJob, scan.id, self.worker_id, total_assets=len(rows)
        )
        await self.db.commit()

        scanned: list[ScannedAsset] = []
        with_fingerprint = 0
        for position, (asset, service_key) in enumerate(rows, start=1):
            fingerprint = asset.fingerprint or await self._fingerprint(asset, service_key)
            if fingerprint:
                with_fingerprint += 1
            scanned.append(
                ScannedAsset(
                    id=asset.id,
                    fingerprint=fingerprint,
                    perceptual_hash=asset.perceptual_hash,
                    width=asset.width,
                    height=asset.height,
                    created_at=asset.created_at,
                )
            )
            if position % SCAN_BATCH_SIZE == 0 or position == len(rows):
                await leases.guarded_update(
                    self.db,
                    DedupScanJob,
                    scan.id,
                    self.worker_id,
                    scanned_assets=position,
                    assets_with_fingerprint=with_fingerprint,
                )
                await self.db.commit()
                if await self._cancel_requested(scan.id):
                    return await self._cancel(scan.id)

        await leases.guarded_update(
            self.db, DedupScanJob, scan.id, self.worker_id, status=DedupScanStatus.GROUPING
        )
        await self.db.commit()

        planned = plan_groups(scanned, scan.similarity_threshold, self.oracle)
        if await self._cancel_requested(scan.id):
            return await self._cancel(scan.id)

        await self._replace_pending_groups(scan, planned)
        exact = sum(1 for g in planned if g.group_type == DuplicateGroupType.EXACT)
        await self._finish(
            scan.id,
            DedupScanStatus.COMPLETED,
            completed_at=utc_now(),
            duplicates_found=exact,
            similar_found=len(planned) - exact,
        )
        logger.info(
            "dedup_scan_completed",
            scan_id=scan.id,
            owner_id=scan.owner_id,
            assets=len(scanned),
            exact_groups=exact,
            similar_groups=len(planned) - exact,
        )
        return DedupScanStatus.COMPLETED

    async def _fingerprint(self, asset: Asset, service_key: str | None) -> str | None:
        """Hash stored bytes for an asset that has no fingerprint yet."""
        if asset.storage_key:
            try:
                data = await self.storage.read(asset.storage_key)
            except StorageFailureError as e:
                logger.warning("dedup_asset_unreadable", asset_id=asset.id, error=e.message)
            else:
                fingerprint = compute_bytes_fingerprint(data)
                asset.fingerprint = fingerprint
                return fingerprint

        if service_key and asset.remote_id:
            # Not persisted: metadata identities only hold within one scan
            return metadata_fingerprint(service_key, asset.remote_id, asset.byte_size)
        return None

    async def _replace_pending_groups(self, scan: DedupScanJob, planned: list[PlannedGroup]) -> None:
        pending_ids = select(DuplicateGroup.id).where(
            DuplicateGroup.owner_id == scan.owner_id,
            DuplicateGroup.status == DuplicateGroupStatus.PENDING,
        )
        await self.db.execute(
            delete(DuplicateGroupMember)
            .where(DuplicateGroupMember.group_id.in_(pending_ids))
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(DuplicateGroup)
            .where(
                DuplicateGroup.owner_id == scan.owner_id,
                DuplicateGroup.status == DuplicateGroupStatus.PENDING,
            )
            .execution_options(synchronize_session=False)
        )

        for plan in planned:
            group = DuplicateGroup(
                owner_id=scan.owner_id,
                scan_job_id=scan.id,
                group_type=plan.group_type,
                group_key=plan.group_key,
                status=DuplicateGroupStatus.PENDING,
                asset_count=len(plan.member_ids),
                members=[
                    DuplicateGroupMember(
                        asset_id=asset_id,
                        is_primary=asset_id == plan.primary_id,
                        similarity_score=plan.scores.get(asset_id, 1.0),
                    )
                    for asset_id in plan.member_ids
                ],
            )
            self.db.add(group)

    async def _cancel_requested(self, scan_id: str) -> bool:
        action = await self.db.scalar(
            select(DedupScanJob.requested_action).where(DedupScanJob.id == scan_id)
        )
        return action == RequestedAction.CANCEL

    async def _cancel(self, scan_id: str) -> DedupScanStatus:
        await self.db.rollback()
        await self._finish(scan_id, DedupScanStatus.CANCELLED, completed_at=utc_now())
        return DedupScanStatus.CANCELLED

    async def _finish(self, scan_id: str, status: DedupScanStatus, **values) -> None:
        await leases.release(
            self.db,
            DedupScanJob,
            scan_id,
            self.worker_id,
            status=status,
            requested_action=RequestedAction.NONE,
            **values,
        )
        await self.db.commit()
