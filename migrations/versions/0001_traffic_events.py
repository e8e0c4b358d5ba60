"""traffic events and ingestion cursors

Revision ID: 0001_traffic_events
Revises:
Create Date: 2026-10-16

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_traffic_events'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'traffic_events',
        sa.Column('id', sa.BigInteger().with_variant(sa.Integer(), 'sqlite'), primary_key=True, nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration', sa.Float(), nullable=True),
        sa.Column('client_ip', sa.String(length=64), nullable=False),
        sa.Column('subnet', sa.String(length=64), nullable=True),
        sa.Column('cf_ray', sa.String(length=64), nullable=True),
        sa.Column('site', sa.String(length=255), nullable=False),
        sa.Column('method', sa.String(length=12), nullable=True),
        sa.Column('path', sa.Text(), nullable=False),
        sa.Column('query_string', sa.Text(), nullable=True),
        sa.Column('status', sa.Integer(), nullable=True),
        sa.Column('response_size', sa.BigInteger(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('referer', sa.Text(), nullable=True),
        sa.Column('accept_language', sa.String(length=255), nullable=True),
        sa.Column('country', sa.String(length=8), nullable=True),
        sa.Column('city', sa.String(length=120), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('asn', sa.Integer(), nullable=True),
        sa.Column('asn_org', sa.String(length=255), nullable=True),
        sa.Column('datacenter_provider', sa.String(length=64), nullable=True),
        sa.Column('has_sec_fetch_headers', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('has_client_hints', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_mobile', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('bot_from_email', sa.String(length=255), nullable=True),
        sa.Column('openai_host_hash', sa.String(length=255), nullable=True),
        sa.Column('has_cf_worker', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cf_worker_domain', sa.String(length=255), nullable=True),
        sa.Column('is_exploit_attempt', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_bot', sa.Boolean(), nullable=False),
        sa.Column('category', sa.String(length=40), nullable=False),
        sa.Column('identity_name', sa.String(length=120), nullable=True),
        sa.Column('detection_tier', sa.SmallInteger(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('headers_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    for column in ('timestamp', 'client_ip', 'subnet', 'site', 'asn', 'datacenter_provider', 'category', 'identity_name'):
        op.create_index(f'ix_traffic_events_{column}', 'traffic_events', [column], unique=False)
    op.create_index('ix_traffic_events_site_timestamp', 'traffic_events', ['site', 'timestamp'], unique=False)

    op.create_table(
        'ingestion_cursors',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('last_processed_timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_record_id', sa.String(length=64), nullable=True),
        sa.Column('records_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_ingestion_cursors_created_at', 'ingestion_cursors', ['created_at'], unique=False)


def downgrade():
    op.drop_index('ix_ingestion_cursors_created_at', table_name='ingestion_cursors')
    op.drop_table('ingestion_cursors')

    op.drop_index('ix_traffic_events_site_timestamp', table_name='traffic_events')
    for column in ('identity_name', 'category', 'datacenter_provider', 'asn', 'site', 'subnet', 'client_ip', 'timestamp'):
        op.drop_index(f'ix_traffic_events_{column}', table_name='traffic_events')
    op.drop_table('traffic_events')
