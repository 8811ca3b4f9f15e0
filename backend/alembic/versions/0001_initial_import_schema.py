"""initial_import_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

Create the import and dedup tables:
- import_services: provider catalog (seeded at startup)
- import_sources / import_source_items: connections and synced remote ids
- import_jobs / import_job_candidates: jobs, leases and enumerated assets
- assets: vault records with provenance and tombstones
- dedup_scan_jobs / duplicate_groups / duplicate_group_members
- account_plans: per-owner photo limits

The partial unique indexes allow one active import job and one active scan
per owner.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_IMPORT_SQL = "status IN ('pending', 'estimating', 'ready', 'importing')"
ACTIVE_SCAN_SQL = "status IN ('pending', 'scanning', 'grouping')"


def upgrade() -> None:
    """Create all import and dedup tables."""

    # === Provider catalog ===
    op.create_table(
        'import_services',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('service_key', sa.String(64), nullable=False, unique=True),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('connector_kind', sa.String(32), nullable=False),
        sa.Column('requires_app_review', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('supports_albums', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
    )

    # === Sources ===
    op.create_table(
        'import_sources',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('service_id', sa.String(36), sa.ForeignKey('import_services.id'), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('credentials_encrypted', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('total_assets_synced', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('disconnected_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_import_sources_owner_active', 'import_sources', ['owner_id', 'is_active'])

    op.create_table(
        'import_source_items',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('source_id', sa.String(36), sa.ForeignKey('import_sources.id', ondelete='CASCADE'), nullable=False),
        sa.Column('remote_id', sa.String(512), nullable=False),
        sa.Column('fingerprint', sa.String(160), nullable=True),
        sa.Column('asset_id', sa.String(36), nullable=True),
        sa.Column('job_id', sa.String(36), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('source_id', 'remote_id', name='uq_import_source_items_remote'),
    )
    op.create_index('ix_import_source_items_asset_id', 'import_source_items', ['asset_id'])

    # === Import jobs ===
    op.create_table(
        'import_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('source_id', sa.String(36), sa.ForeignKey('import_sources.id'), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='pending'),  # ImportJobStatus
        sa.Column('scope', sa.String(32), nullable=False, server_default='full'),  # ImportScope
        sa.Column('selected_album_ids_json', sa.Text(), nullable=True),
        sa.Column('skip_deduplication', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('skip_similar', sa.Boolean(), nullable=False, server_default='0'),
        # Progress counters
        sa.Column('total_assets', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_assets', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('imported_assets', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skipped_duplicates', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skipped_similar', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_assets', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_code', sa.String(64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('requested_action', sa.String(32), nullable=False, server_default='none'),
        # Worker lease
        sa.Column('lease_owner', sa.String(128), nullable=True),
        sa.Column('lease_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('heartbeat_at', sa.DateTime(timezone=True), nullable=True),
        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rolled_back_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        'uq_import_jobs_owner_active',
        'import_jobs',
        ['owner_id'],
        unique=True,
        sqlite_where=sa.text(ACTIVE_IMPORT_SQL),
        postgresql_where=sa.text(ACTIVE_IMPORT_SQL),
    )
    op.create_index('ix_import_jobs_status_lease', 'import_jobs', ['status', 'lease_expires_at'])
    op.create_index('ix_import_jobs_source_id', 'import_jobs', ['source_id'])

    op.create_table(
        'import_job_candidates',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('job_id', sa.String(36), sa.ForeignKey('import_jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('ordinal', sa.Integer(), nullable=False),
        sa.Column('remote_id', sa.String(512), nullable=False),
        sa.Column('album_id', sa.String(512), nullable=True),
        sa.Column('filename', sa.String(512), nullable=True),
        sa.Column('media_type', sa.String(64), nullable=True),
        sa.Column('byte_size', sa.Integer(), nullable=True),
        sa.Column('content_hash', sa.String(160), nullable=True),
        sa.Column('perceptual_hash', sa.String(64), nullable=True),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('taken_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('extra_json', sa.Text(), nullable=True),
        sa.Column('outcome', sa.String(32), nullable=False, server_default='pending'),
        sa.Column('fingerprint', sa.String(160), nullable=True),
        sa.Column('asset_id', sa.String(36), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
    )
    op.create_index(
        'ix_import_job_candidates_job_ordinal',
        'import_job_candidates',
        ['job_id', 'ordinal'],
        unique=True,
    )

    # === Vault assets ===
    op.create_table(
        'assets',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('fingerprint', sa.String(160), nullable=True),
        sa.Column('perceptual_hash', sa.String(64), nullable=True),
        sa.Column('filename', sa.String(512), nullable=True),
        sa.Column('media_type', sa.String(64), nullable=True),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('byte_size', sa.BigInteger(), nullable=True),
        sa.Column('storage_key', sa.String(1024), nullable=True),
        sa.Column('taken_at', sa.DateTime(timezone=True), nullable=True),
        # Provenance
        sa.Column('source_id', sa.String(36), sa.ForeignKey('import_sources.id'), nullable=True),
        sa.Column('remote_id', sa.String(512), nullable=True),
        sa.Column('import_job_id', sa.String(36), sa.ForeignKey('import_jobs.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_assets_owner_fingerprint', 'assets', ['owner_id', 'fingerprint'])
    op.create_index('ix_assets_import_job_id', 'assets', ['import_job_id'])
    op.create_index('ix_assets_owner_deleted', 'assets', ['owner_id', 'deleted_at'])

    # === Dedup ===
    op.create_table(
        'dedup_scan_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='pending'),  # DedupScanStatus
        sa.Column('similarity_threshold', sa.Float(), nullable=False),
        sa.Column('total_assets', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('scanned_assets', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('assets_with_fingerprint', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('duplicates_found', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('similar_found', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_code', sa.String(64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('requested_action', sa.String(32), nullable=False, server_default='none'),
        sa.Column('lease_owner', sa.String(128), nullable=True),
        sa.Column('lease_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        'uq_dedup_scan_jobs_owner_active',
        'dedup_scan_jobs',
        ['owner_id'],
        unique=True,
        sqlite_where=sa.text(ACTIVE_SCAN_SQL),
        postgresql_where=sa.text(ACTIVE_SCAN_SQL),
    )
    op.create_index('ix_dedup_scan_jobs_status_lease', 'dedup_scan_jobs', ['status', 'lease_expires_at'])

    op.create_table(
        'duplicate_groups',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('scan_job_id', sa.String(36), sa.ForeignKey('dedup_scan_jobs.id', ondelete='SET NULL'), nullable=True),
        sa.Column('group_type', sa.String(32), nullable=False),  # DuplicateGroupType
        sa.Column('group_key', sa.String(160), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='pending'),
        sa.Column('asset_count', sa.Integer(), nullable=False),
        sa.Column('resolution_action', sa.String(32), nullable=True),
        sa.Column('kept_asset_id', sa.String(36), nullable=True),
        sa.Column('deleted_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_duplicate_groups_owner_status', 'duplicate_groups', ['owner_id', 'status'])

    op.create_table(
        'duplicate_group_members',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('group_id', sa.String(36), sa.ForeignKey('duplicate_groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('asset_id', sa.String(36), sa.ForeignKey('assets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('similarity_score', sa.Float(), nullable=False, server_default='1.0'),
    )
    op.create_index('ix_duplicate_group_members_group_id', 'duplicate_group_members', ['group_id'])
    op.create_index('ix_duplicate_group_members_asset_id', 'duplicate_group_members', ['asset_id'])

    # === Plans ===
    op.create_table(
        'account_plans',
        sa.Column('owner_id', sa.String(64), primary_key=True),
        sa.Column('plan_tier', sa.String(64), nullable=False),
        sa.Column('max_photos', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )


def downgrade() -> None:
    """Drop all import and dedup tables."""
    op.drop_table('account_plans')
    op.drop_table('duplicate_group_members')
    op.drop_table('duplicate_groups')
    op.drop_table('dedup_scan_jobs')
    op.drop_table('assets')
    op.drop_table('import_job_candidates')
    op.drop_table('import_jobs')
    op.drop_table('import_source_items')
    op.drop_table('import_sources')
    op.drop_table('import_services')
