"""Create data lifecycle tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Retention policies (owned by the configuration authority)
    op.create_table(
        'data_retention_policies',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('entity_name', sa.Text(), nullable=False),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('retention_period_days', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('criteria', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("action IN ('hard-delete', 'soft-delete')", name='ck_data_retention_policies_action'),
        sa.CheckConstraint('retention_period_days >= 0', name='ck_data_retention_policies_period')
    )
    op.create_index('ix_data_retention_policies_active', 'data_retention_policies', ['active'])

    # Retention audit trail (append-only, no FK so it outlives policy deletion)
    op.create_table(
        'data_retention_audit_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('policy_id', sa.Integer(), nullable=False),
        sa.Column('dry_run', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('rows_affected', sa.Integer(), server_default='0', nullable=False),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_data_retention_audit_logs_policy_id_created_at',
        'data_retention_audit_logs',
        ['policy_id', sa.text('created_at DESC')]
    )

    # Partition policies
    op.create_table(
        'data_partition_policies',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('table_name', sa.Text(), nullable=False),
        sa.Column('date_column', sa.Text(), nullable=False),
        sa.Column('strategy', sa.Text(), server_default='monthly_range', nullable=False),
        sa.Column('retention_days', sa.Integer(), server_default='0', nullable=False),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('table_name', name='uq_data_partition_policies_table_name')
    )

    # Partition archive manifests
    op.create_table(
        'data_partition_archives',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('table_name', sa.Text(), nullable=False),
        sa.Column('partition_name', sa.Text(), nullable=False),
        sa.Column('range_start', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('range_end', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('retention_days', sa.Integer(), server_default='0', nullable=False),
        sa.Column('archived_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('dropped_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('storage_bucket', sa.Text(), nullable=False),
        sa.Column('storage_key', sa.Text(), nullable=False),
        sa.Column('row_count', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('byte_size', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('checksum', sa.Text(), nullable=False),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('table_name', 'partition_name', name='uq_data_partition_archives_table_partition')
    )
    op.create_index('ix_data_partition_archives_archived_at', 'data_partition_archives', [sa.text('archived_at DESC')])

    # Change data capture outbox
    op.create_table(
        'change_data_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('domain', sa.Text(), nullable=False),
        sa.Column('entity_name', sa.Text(), nullable=False),
        sa.Column('entity_id', sa.Text(), nullable=True),
        sa.Column('operation', sa.Text(), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('dry_run', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('delivered_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_change_data_events_domain_created_at', 'change_data_events', ['domain', 'created_at'])
    op.create_index(
        'ix_change_data_events_undelivered',
        'change_data_events',
        ['created_at'],
        postgresql_where=sa.text('delivered_at IS NULL')
    )

    # Platform settings (resume approval gate)
    op.create_table(
        'platform_settings',
        sa.Column('key', sa.Text(), nullable=False),
        sa.Column('value', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('key')
    )

    # Governance audit events (run summaries, pauses)
    op.create_table(
        'governance_audit_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_type', sa.Text(), nullable=False),
        sa.Column('entity_type', sa.Text(), nullable=True),
        sa.Column('entity_id', sa.Text(), nullable=True),
        sa.Column('severity', sa.Text(), server_default='info', nullable=False),
        sa.Column('metadata_json', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "severity IN ('info', 'notice', 'warning', 'critical')",
            name='ck_governance_audit_events_severity'
        )
    )
    op.create_index(
        'ix_governance_audit_events_event_type_created_at',
        'governance_audit_events',
        ['event_type', sa.text('created_at DESC')]
    )
    op.create_index('ix_governance_audit_events_entity', 'governance_audit_events', ['entity_type', 'entity_id'])


def downgrade():
    op.drop_index('ix_governance_audit_events_entity', table_name='governance_audit_events')
    op.drop_index('ix_governance_audit_events_event_type_created_at', table_name='governance_audit_events')
    op.drop_table('governance_audit_events')

    op.drop_table('platform_settings')

    op.drop_index('ix_change_data_events_undelivered', table_name='change_data_events')
    op.drop_index('ix_change_data_events_domain_created_at', table_name='change_data_events')
    op.drop_table('change_data_events')

    op.drop_index('ix_data_partition_archives_archived_at', table_name='data_partition_archives')
    op.drop_table('data_partition_archives')

    op.drop_table('data_partition_policies')

    op.drop_index('ix_data_retention_audit_logs_policy_id_created_at', table_name='data_retention_audit_logs')
    op.drop_table('data_retention_audit_logs')

    op.drop_index('ix_data_retention_policies_active', table_name='data_retention_policies')
    op.drop_table('data_retention_policies')
