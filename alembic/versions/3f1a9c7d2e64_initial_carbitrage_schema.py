"""Initial schema: listings, fingerprints, opportunities, hunts, pipeline runs, scan cursors

Revision ID: 3f1a9c7d2e64
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c7d2e64'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Listings + fingerprints (written by upstream ingest / aggregation)
    op.create_table('listing_details_norm',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('account_id', sa.Text(), nullable=False),
        sa.Column('make', sa.Text(), nullable=True),
        sa.Column('model', sa.Text(), nullable=True),
        sa.Column('variant', sa.Text(), nullable=True),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('km', sa.Integer(), nullable=True),
        sa.Column('asking_price', sa.Float(), nullable=True),
        sa.Column('transmission', sa.Text(), nullable=True),
        sa.Column('fuel', sa.Text(), nullable=True),
        sa.Column('drivetrain', sa.Text(), nullable=True),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('source', sa.Text(), nullable=True),
        sa.Column('extraction_confidence', sa.Text(), nullable=True),
        sa.Column('last_seen', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_listing_norm_account_seen', 'listing_details_norm', ['account_id', 'last_seen'])

    op.create_table('sales_fingerprints',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Text(), nullable=False),
        sa.Column('platform_class', sa.Text(), nullable=False),
        sa.Column('make', sa.Text(), nullable=False),
        sa.Column('model', sa.Text(), nullable=False),
        sa.Column('sales_count', sa.Integer(), nullable=True),
        sa.Column('km_p25', sa.Integer(), nullable=True),
        sa.Column('km_median', sa.Integer(), nullable=True),
        sa.Column('km_p75', sa.Integer(), nullable=True),
        sa.Column('price_median', sa.Float(), nullable=True),
        sa.Column('last_sold_at', sa.DateTime(), nullable=True),
        sa.Column('dominant_transmission', sa.Text(), nullable=True),
        sa.Column('dominant_transmission_count', sa.Integer(), nullable=True),
        sa.Column('dominant_fuel', sa.Text(), nullable=True),
        sa.Column('dominant_fuel_count', sa.Integer(), nullable=True),
        sa.Column('dominant_drivetrain', sa.Text(), nullable=True),
        sa.Column('dominant_drivetrain_count', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'platform_class', name='uq_fingerprint_account_class'),
    )

    # Opportunity sink
    op.create_table('matched_opportunities',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Text(), nullable=False),
        sa.Column('listing_id', sa.Text(), nullable=False),
        sa.Column('platform_class', sa.Text(), nullable=False),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('make', sa.Text(), nullable=True),
        sa.Column('model', sa.Text(), nullable=True),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('km', sa.Integer(), nullable=True),
        sa.Column('asking_price', sa.Float(), nullable=True),
        sa.Column('source', sa.Text(), nullable=True),
        sa.Column('sales_count', sa.Integer(), nullable=True),
        sa.Column('match_score', sa.Integer(), nullable=False),
        sa.Column('km_band', sa.Text(), nullable=False),
        sa.Column('price_band', sa.Text(), nullable=False),
        sa.Column('reasons', sa.JSON(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('last_scored_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'listing_id', name='uq_opportunity_account_listing'),
    )

    # Hunts
    op.create_table('sale_hunts',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('account_id', sa.Text(), nullable=False),
        sa.Column('make', sa.Text(), nullable=False),
        sa.Column('model', sa.Text(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('km', sa.Integer(), nullable=True),
        sa.Column('proven_exit_value', sa.Float(), nullable=True),
        sa.Column('series_family', sa.Text(), nullable=True),
        sa.Column('engine_family', sa.Text(), nullable=True),
        sa.Column('cab_type', sa.Text(), nullable=True),
        sa.Column('body_type', sa.Text(), nullable=True),
        sa.Column('badge', sa.Text(), nullable=True),
        sa.Column('must_have_tokens', sa.JSON(), nullable=True),
        sa.Column('must_have_mode', sa.Text(), nullable=False),
        sa.Column('min_gap_abs_buy', sa.Float(), nullable=False),
        sa.Column('min_gap_pct_buy', sa.Float(), nullable=False),
        sa.Column('min_gap_abs_watch', sa.Float(), nullable=False),
        sa.Column('min_gap_pct_watch', sa.Float(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('last_scan_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table('hunt_candidates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('hunt_id', sa.Text(), nullable=False),
        sa.Column('source', sa.Text(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('domain', sa.Text(), nullable=True),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('snippet', sa.Text(), nullable=True),
        sa.Column('extracted', sa.JSON(), nullable=True),
        sa.Column('classification', sa.JSON(), nullable=True),
        sa.Column('match_score', sa.Float(), nullable=True),
        sa.Column('decision', sa.Text(), nullable=False),
        sa.Column('reasons', sa.JSON(), nullable=True),
        sa.Column('alert_emitted', sa.Boolean(), nullable=False),
        sa.Column('requires_manual_check', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['hunt_id'], ['sale_hunts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('hunt_id', 'source', 'url', name='uq_candidate_hunt_source_url'),
    )

    op.create_table('hunt_alerts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('hunt_id', sa.Text(), nullable=False),
        sa.Column('candidate_id', sa.Integer(), nullable=False),
        sa.Column('alert_type', sa.Text(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['hunt_id'], ['sale_hunts.id']),
        sa.ForeignKeyConstraint(['candidate_id'], ['hunt_candidates.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_hunt_alerts_hunt_id', 'hunt_alerts', ['hunt_id'])

    op.create_table('hunt_scan_runs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('hunt_id', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('queries', sa.JSON(), nullable=True),
        sa.Column('queries_run', sa.Integer(), nullable=True),
        sa.Column('results_found', sa.Integer(), nullable=True),
        sa.Column('candidates_created', sa.Integer(), nullable=True),
        sa.Column('candidates_rejected', sa.Integer(), nullable=True),
        sa.Column('alerts_emitted', sa.Integer(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['hunt_id'], ['sale_hunts.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    # Pipeline runs + single-flight lock
    op.create_table('pipeline_runs',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('triggered_by', sa.Text(), nullable=True),
        sa.Column('previous_run_id', sa.Text(), nullable=True),
        sa.Column('total_steps', sa.Integer(), nullable=True),
        sa.Column('completed_steps', sa.Integer(), nullable=True),
        sa.Column('failed_steps', sa.Integer(), nullable=True),
        sa.Column('skipped_steps', sa.Integer(), nullable=True),
        sa.Column('error_summary', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_pipeline_runs_started_at', 'pipeline_runs', ['started_at'])

    op.create_table('pipeline_steps',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.Text(), nullable=False),
        sa.Column('step_name', sa.Text(), nullable=False),
        sa.Column('step_order', sa.Integer(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('records_processed', sa.Integer(), nullable=True),
        sa.Column('records_created', sa.Integer(), nullable=True),
        sa.Column('records_updated', sa.Integer(), nullable=True),
        sa.Column('records_failed', sa.Integer(), nullable=True),
        sa.Column('error_sample', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['run_id'], ['pipeline_runs.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id', 'step_name', name='uq_step_run_name'),
    )

    op.create_table('pipeline_locks',
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('token', sa.Text(), nullable=True),
        sa.Column('locked_until', sa.DateTime(), nullable=True),
        sa.Column('acquired_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('name'),
    )

    # Resumable scan cursor + cron audit
    op.create_table('scan_cursors',
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('indices', sa.JSON(), nullable=False),
        sa.Column('batches_completed', sa.Integer(), nullable=True),
        sa.Column('totals', sa.JSON(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('lock_token', sa.Text(), nullable=True),
        sa.Column('locked_until', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('last_done_log_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('name'),
    )

    op.create_table('cron_audit_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('cron_name', sa.Text(), nullable=False),
        sa.Column('run_date', sa.Date(), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cron_audit_log_name_date', 'cron_audit_log', ['cron_name', 'run_date'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_cron_audit_log_name_date', table_name='cron_audit_log')
    op.drop_table('cron_audit_log')
    op.drop_table('scan_cursors')
    op.drop_table('pipeline_locks')
    op.drop_table('pipeline_steps')
    op.drop_index('ix_pipeline_runs_started_at', table_name='pipeline_runs')
    op.drop_table('pipeline_runs')
    op.drop_table('hunt_scan_runs')
    op.drop_index('ix_hunt_alerts_hunt_id', table_name='hunt_alerts')
    op.drop_table('hunt_alerts')
    op.drop_table('hunt_candidates')
    op.drop_table('sale_hunts')
    op.drop_table('matched_opportunities')
    op.drop_table('sales_fingerprints')
    op.drop_index('ix_listing_norm_account_seen', table_name='listing_details_norm')
    op.drop_table('listing_details_norm')
