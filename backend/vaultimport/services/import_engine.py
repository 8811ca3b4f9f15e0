"""Import engine: runs one leased import job through its state machine.

pending -> estimating -> ready -> importing -> completed
                                          \\-> paused | blocked_limit | cancelled | failed

Each candidate is handled in its own transaction: the asset row, the
candidate outcome, the source sync marker and the job counters commit
together, and only while this worker still holds the lease. A reclaimed
job therefore resumes at ``processed_assets`` without redoing or skipping
anything.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.connectors import RemoteAsset, SourceConnector
from vaultimport.core.config import settings
from vaultimport.core.exceptions import (
    LeaseLostError,
    QuotaExceededError,
    StateConflictError,
    StorageFailureError,
    VaultImportError,
)
from vaultimport.core.logging import get_logger
from vaultimport.db.base import new_id, utc_now
from vaultimport.db.models import (
    Asset,
    CandidateOutcome,
    ImportJob,
    ImportJobCandidate,
    ImportJobStatus,
    ImportScope,
    ImportSource,
    ImportSourceItem,
    RequestedAction,
)
from vaultimport.services import leases
from vaultimport.services.plan_guard import PlanGuard
from vaultimport.services.similarity import HashedItem, SimilarityIndex, SimilarityOracle, best_match
from vaultimport.services.sources import iter_new_assets, open_connector, synced_remote_ids
from vaultimport.storage import VaultStorage, get_vault_storage
from vaultimport.utils.fingerprint import (
    compute_bytes_fingerprint,
    metadata_fingerprint,
    normalize_content_hash,
)

logger = get_logger(__name__)

# Candidates loaded per query while importing
CANDIDATE_PAGE_SIZE = 200
# Enumerated assets between lease renewals while estimating
ENUMERATION_CHECKPOINT = 500

COUNTER_FIELDS = (
    "processed_assets",
    "imported_assets",
    "skipped_duplicates",
    "skipped_similar",
    "failed_assets",
)


class ImportEngine:
    """Drives a claimed import job until it stops or finishes.

    Args:
        db: Session owned by the calling worker.
        worker_id: Lease owner identity; every write is conditioned on it.
        storage: Vault content store.
        connector_factory: Builds the connector for a source.
        oracle: Similarity oracle for the inline similar check.
    """

    def __init__(
        self,
        db: AsyncSession,
        worker_id: str,
        *,
        storage: VaultStorage | None = None,
        connector_factory: Callable[[ImportSource], SourceConnector] = open_connector,
        oracle: SimilarityOracle | None = None,
    ):
        self.db = db
        self.worker_id = worker_id
        self.storage = storage or get_vault_storage()
        self.connector_factory = connector_factory
        self.oracle = oracle
        self.plan_guard = PlanGuard(db)
        self._similar_index: SimilarityIndex | None = None

    async def run(self, job_id: str) -> ImportJobStatus | None:
        """Run a job this worker has already claimed.

        Mid-job errors are recorded on the job, never raised.

        Returns:
            The status the job was left in, or None if the lease was lost.
        """
        job = await self.db.get(ImportJob, job_id, populate_existing=True)
        if job is None or job.lease_owner != self.worker_id:
            logger.warning("import_job_not_leased", job_id=job_id, worker_id=self.worker_id)
            return None

        log = logger.bind(job_id=job.id, owner_id=job.owner_id, worker_id=self.worker_id)
        try:
            status = await self._run(job)
        except LeaseLostError:
            await self.db.rollback()
            log.warning("import_job_lease_lost")
            return None
        except QuotaExceededError as e:
            await self.db.rollback()
            await self._finish(
                job_id, ImportJobStatus.BLOCKED_LIMIT, error_code=e.code, error_message=e.message
            )
            log.info("import_job_blocked_limit")
            return ImportJobStatus.BLOCKED_LIMIT
        except VaultImportError as e:
            await self.db.rollback()
            await self._finish(
                job_id,
                ImportJobStatus.FAILED,
                completed_at=utc_now(),
                error_code=e.code,
                error_message=e.message,
            )
            log.error("import_job_failed", error_code=e.code, error=e.message)
            return ImportJobStatus.FAILED

        log.info("import_job_stopped", status=status.value)
        return status

    async def fail(self, job_id: str, error: Exception) -> None:
        """Record an unexpected error on a job this worker holds."""
        await self.db.rollback()
        try:
            await self._finish(
                job_id,
                ImportJobStatus.FAILED,
                completed_at=utc_now(),
                error_code="internal_error",
                error_message=str(error),
            )
        except LeaseLostError:
            await self.db.rollback()

    async def _run(self, job: ImportJob) -> ImportJobStatus:
        source = await self.db.get(ImportSource, job.source_id)
        if source is None or not source.is_active:
            raise StateConflictError("Source was disconnected before the import ran")

        stop = await self._pending_stop(job.id)
        if stop is not None:
            return await self._stop(job.id, stop)

        async with self.connector_factory(source) as connector:
            if job.status in (ImportJobStatus.PENDING, ImportJobStatus.ESTIMATING):
                stop = await self._enumerate(job, source, connector)
                if stop is not None:
                    return await self._stop(job.id, stop)

            await leases.guarded_update(
                self.db,
                ImportJob,
                job.id,
                self.worker_id,
                status=ImportJobStatus.IMPORTING,
                started_at=job.started_at or utc_now(),
            )
            await self.db.commit()
            await self.db.refresh(job)

            counters = {name: getattr(job, name) or 0 for name in COUNTER_FIELDS}
            while True:
                candidates = await self._next_candidates(job.id, counters["processed_assets"])
                if not candidates:
                    break
                for candidate in candidates:
                    await self._process_candidate(job, source, connector, candidate, counters)
                    stop = await self._pending_stop(job.id)
                    if stop is not None:
                        return await self._stop(job.id, stop)

        await self.db.execute(
            update(ImportSource)
            .where(ImportSource.id == source.id)
            .values(last_sync_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self._finish(job.id, ImportJobStatus.COMPLETED, completed_at=utc_now())
        return ImportJobStatus.COMPLETED

    # =========================================================================
    # Estimating
    # =========================================================================

    async def _enumerate(
        self,
        job: ImportJob,
        source: ImportSource,
        connector: SourceConnector,
    ) -> RequestedAction | None:
        """Persist the job's candidate list in provider order."""
        await leases.guarded_update(
            self.db,
            ImportJob,
            job.id,
            self.worker_id,
            status=ImportJobStatus.ESTIMATING,
            started_at=job.started_at or utc_now(),
            heartbeat_at=utc_now(),
        )
        # A previous owner may have died mid-enumeration
        await self.db.execute(delete(ImportJobCandidate).where(ImportJobCandidate.job_id == job.id))
        await self.db.commit()

        album_ids = job.selected_album_ids if job.scope == ImportScope.SELECTED_ALBUMS else None
        synced = await synced_remote_ids(self.db, source.id)

        rows: list[ImportJobCandidate] = []
        async for asset in iter_new_assets(connector, synced, album_ids):
            rows.append(_candidate_from_remote(job.id, len(rows), asset))
            if len(rows) % ENUMERATION_CHECKPOINT == 0:
                await leases.guarded_update(
                    self.db, ImportJob, job.id, self.worker_id, heartbeat_at=utc_now()
                )
                await self.db.commit()
                stop = await self._pending_stop(job.id)
                if stop is not None:
                    return stop

        self.db.add_all(rows)
        await leases.guarded_update(
            self.db,
            ImportJob,
            job.id,
            self.worker_id,
            status=ImportJobStatus.READY,
            total_assets=len(rows),
            heartbeat_at=utc_now(),
        )
        await self.db.commit()

        logger.info("import_job_estimated", job_id=job.id, total_assets=len(rows))
        return None

    # =========================================================================
    # Importing
    # =========================================================================

    async def _next_candidates(self, job_id: str, start: int) -> list[ImportJobCandidate]:
        result = await self.db.execute(
            select(ImportJobCandidate)
            .where(ImportJobCandidate.job_id == job_id, ImportJobCandidate.ordinal >= start)
            .order_by(ImportJobCandidate.ordinal)
            .limit(CANDIDATE_PAGE_SIZE)
        )
        return list(result.scalars().all())

    async def _process_candidate(
        self,
        job: ImportJob,
        source: ImportSource,
        connector: SourceConnector,
        candidate: ImportJobCandidate,
        counters: dict[str, int],
    ) -> None:
        """Handle one candidate and commit its outcome with the counters.

        Raises:
            QuotaExceededError: The plan is full; nothing was written.
            LeaseLostError: Another worker owns the job; nothing was written.
        """
        if await self._skip_if_synced(source.id, candidate, counters):
            counters["processed_assets"] += 1
            await self._commit_progress(job.id, counters)
            return

        remote = _remote_from_candidate(candidate)
        stored_key: str | None = None
        data: bytes | None = None

        try:
            fingerprint = normalize_content_hash(candidate.content_hash)
            if fingerprint is None:
                data = await connector.fetch_content(remote)
                fingerprint = compute_bytes_fingerprint(data)
            candidate.fingerprint = fingerprint

            outcome = await self._match_existing(job, candidate, fingerprint, counters)

            if outcome is None:
                if not await self.plan_guard.has_capacity(job.owner_id):
                    raise QuotaExceededError("Photo limit reached for this account's plan")
                if data is None:
                    data = await connector.fetch_content(remote)

                asset_id = new_id()
                stored_key = await self.storage.put(job.owner_id, asset_id, candidate.filename, data)
                self.db.add(
                    Asset(
                        id=asset_id,
                        owner_id=job.owner_id,
                        fingerprint=fingerprint,
                        perceptual_hash=candidate.perceptual_hash,
                        filename=candidate.filename,
                        media_type=candidate.media_type,
                        width=candidate.width,
                        height=candidate.height,
                        byte_size=len(data),
                        storage_key=stored_key,
                        taken_at=candidate.taken_at,
                        source_id=source.id,
                        remote_id=candidate.remote_id,
                        import_job_id=job.id,
                    )
                )
                candidate.asset_id = asset_id
                candidate.outcome = CandidateOutcome.IMPORTED
                counters["imported_assets"] += 1
                self._mark_synced(source.id, candidate)
                await self.db.execute(
                    update(ImportSource)
                    .where(ImportSource.id == source.id)
                    .values(total_assets_synced=ImportSource.total_assets_synced + 1)
                    .execution_options(synchronize_session=False)
                )
                if self._similar_index is not None and candidate.perceptual_hash:
                    self._similar_index.add(
                        HashedItem(asset_id, candidate.perceptual_hash, fingerprint)
                    )
        except StorageFailureError as e:
            if candidate.fingerprint is None:
                candidate.fingerprint = metadata_fingerprint(
                    source.service.service_key, candidate.remote_id, candidate.byte_size
                )
            candidate.outcome = CandidateOutcome.FAILED
            candidate.error = e.message
            counters["failed_assets"] += 1
            logger.warning(
                "import_asset_failed",
                job_id=job.id,
                remote_id=candidate.remote_id,
                error=e.message,
                failed_assets=counters["failed_assets"],
            )

        counters["processed_assets"] += 1
        await self._commit_progress(job.id, counters, stored_key)

        if counters["failed_assets"] > settings.max_asset_failures:
            raise StorageFailureError(
                f"{counters['failed_assets']} assets failed to transfer; giving up"
            )

    async def _skip_if_synced(
        self,
        source_id: str,
        candidate: ImportJobCandidate,
        counters: dict[str, int],
    ) -> bool:
        """Skip a candidate another import of this source synced after estimating.

        Paused and blocked jobs do not hold the owner's active slot, so a
        newer job may have brought in the rest of their candidate list.
        """
        row = (
            await self.db.execute(
                select(ImportSourceItem.asset_id, ImportSourceItem.fingerprint).where(
                    ImportSourceItem.source_id == source_id,
                    ImportSourceItem.remote_id == candidate.remote_id,
                )
            )
        ).first()
        if row is None:
            return False

        candidate.asset_id, candidate.fingerprint = row
        candidate.outcome = CandidateOutcome.DUPLICATE
        counters["skipped_duplicates"] += 1
        logger.debug(
            "import_asset_already_synced",
            job_id=candidate.job_id,
            remote_id=candidate.remote_id,
        )
        return True

    async def _commit_progress(
        self,
        job_id: str,
        counters: dict[str, int],
        stored_key: str | None = None,
    ) -> None:
        """Persist counters under the lease; drop stored content if the lease is gone."""
        try:
            await leases.guarded_update(
                self.db,
                ImportJob,
                job_id,
                self.worker_id,
                heartbeat_at=utc_now(),
                **counters,
            )
            await self.db.commit()
        except LeaseLostError:
            if stored_key is not None:
                await self.storage.delete(stored_key)
            raise

    async def _match_existing(
        self,
        job: ImportJob,
        candidate: ImportJobCandidate,
        fingerprint: str,
        counters: dict[str, int],
    ) -> CandidateOutcome | None:
        """Mark the candidate skipped if the vault already holds it."""
        source_id = job.source_id
        if not job.skip_deduplication:
            existing_id = await self.db.scalar(
                select(Asset.id)
                .where(
                    Asset.owner_id == job.owner_id,
                    Asset.fingerprint == fingerprint,
                    Asset.deleted_at.is_(None),
                )
                .order_by(Asset.created_at)
                .limit(1)
            )
            if existing_id is not None:
                candidate.asset_id = existing_id
                candidate.outcome = CandidateOutcome.DUPLICATE
                counters["skipped_duplicates"] += 1
                self._mark_synced(source_id, candidate)
                return candidate.outcome

        if job.skip_similar and candidate.perceptual_hash:
            index = await self._load_similar_index(job.owner_id)
            match = best_match(
                candidate.perceptual_hash,
                index.candidates(candidate.perceptual_hash),
                settings.similarity_threshold,
                self.oracle,
            )
            if match is not None:
                candidate.asset_id = match[0]
                candidate.outcome = CandidateOutcome.SIMILAR
                counters["skipped_similar"] += 1
                self._mark_synced(source_id, candidate)
                return candidate.outcome

        return None

    async def _load_similar_index(self, owner_id: str) -> SimilarityIndex:
        if self._similar_index is None:
            index = SimilarityIndex(settings.similarity_threshold, self.oracle)
            result = await self.db.execute(
                select(Asset.id, Asset.perceptual_hash, Asset.fingerprint).where(
                    Asset.owner_id == owner_id,
                    Asset.deleted_at.is_(None),
                    Asset.perceptual_hash.is_not(None),
                )
            )
            for asset_id, perceptual_hash, fingerprint in result.all():
                index.add(HashedItem(asset_id, perceptual_hash, fingerprint))
            self._similar_index = index
        return self._similar_index

    def _mark_synced(self, source_id: str, candidate: ImportJobCandidate) -> None:
        self.db.add(
            ImportSourceItem(
                source_id=source_id,
                remote_id=candidate.remote_id,
                fingerprint=candidate.fingerprint,
                asset_id=candidate.asset_id,
                job_id=candidate.job_id,
            )
        )

    # =========================================================================
    # Control
    # =========================================================================

    async def _pending_stop(self, job_id: str) -> RequestedAction | None:
        action = await self.db.scalar(
            select(ImportJob.requested_action).where(ImportJob.id == job_id)
        )
        if action in (RequestedAction.PAUSE, RequestedAction.CANCEL):
            return action
        return None

    async def _stop(self, job_id: str, action: RequestedAction) -> ImportJobStatus:
        if action == RequestedAction.CANCEL:
            await self._finish(job_id, ImportJobStatus.CANCELLED, completed_at=utc_now())
            return ImportJobStatus.CANCELLED
        await self._finish(job_id, ImportJobStatus.PAUSED)
        return ImportJobStatus.PAUSED

    async def _finish(self, job_id: str, status: ImportJobStatus, **values: Any) -> None:
        await leases.release(
            self.db,
            ImportJob,
            job_id,
            self.worker_id,
            status=status,
            requested_action=RequestedAction.NONE,
            **values,
        )
        await self.db.commit()


def _candidate_from_remote(job_id: str, ordinal: int, asset: RemoteAsset) -> ImportJobCandidate:
    return ImportJobCandidate(
        job_id=job_id,
        ordinal=ordinal,
        remote_id=asset.remote_id,
        album_id=asset.album_id,
        filename=asset.filename,
        media_type=asset.media_type,
        byte_size=asset.byte_size,
        content_hash=asset.content_hash,
        perceptual_hash=asset.perceptual_hash,
        width=asset.width,
        height=asset.height,
        taken_at=asset.taken_at,
        extra_json=json.dumps(asset.extra) if asset.extra else None,
        outcome=CandidateOutcome.PENDING,
    )


def _remote_from_candidate(candidate: ImportJobCandidate) -> RemoteAsset:
    return RemoteAsset(
        remote_id=candidate.remote_id,
        filename=candidate.filename,
        album_id=candidate.album_id,
        media_type=candidate.media_type,
        byte_size=candidate.byte_size,
        content_hash=candidate.content_hash,
        perceptual_hash=candidate.perceptual_hash,
        width=candidate.width,
        height=candidate.height,
        taken_at=candidate.taken_at,
        extra=json.loads(candidate.extra_json) if candidate.extra_json else {},
    )
