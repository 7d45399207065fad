"""Create tenants, users, human agents, handoffs and webhook tables

Revision ID: 0001_create_handoff_tables
Revises:
Create Date: 2026-10-16 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_create_handoff_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('subdomain', sa.String(length=100), nullable=False, unique=True, index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=True, index=True),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True, index=True),
        sa.Column('hashed_password', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='user'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'human_agents',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='available'),
        sa.Column('active_chats', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_chats', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('last_seen', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('tenant_id', 'email', name='uq_human_agents_tenant_email'),
    )

    op.create_table(
        'handoffs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('chat_id', sa.String(length=255), nullable=False, index=True),
        sa.Column('channel', sa.String(length=20), nullable=False, server_default='widget'),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='ai'),
        sa.Column('assigned_agent_id', sa.Integer(), sa.ForeignKey('human_agents.id'), nullable=True, index=True),
        sa.Column('requested_at', sa.DateTime(), nullable=True),
        sa.Column('picked_up_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolution_reason', sa.String(length=30), nullable=True),
        sa.Column('resolved_by_agent_id', sa.Integer(), sa.ForeignKey('human_agents.id'), nullable=True),
        sa.Column('last_user_message', sa.Text(), nullable=True),
        sa.Column('conversation_history', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('user_email', sa.String(length=255), nullable=True),
        sa.Column('user_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_handoffs_tenant_status', 'handoffs', ['tenant_id', 'status'])

    op.create_table(
        'handoff_messages',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('handoff_id', sa.Integer(), sa.ForeignKey('handoffs.id'), nullable=False, index=True),
        sa.Column('sender_type', sa.String(length=20), nullable=False),
        sa.Column('sender_id', sa.Integer(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now(), index=True),
    )

    op.create_table(
        'webhook_registrations',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('workflow_name', sa.String(length=100), nullable=False),
        sa.Column('webhook_url', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('auth_token', sa.Text(), nullable=True),  # ENCRYPTED
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_called_at', sa.DateTime(), nullable=True),
        sa.Column('total_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('tenant_id', 'workflow_name', name='uq_webhook_registrations_tenant_workflow'),
    )

    op.create_table(
        'webhook_calls',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('webhook_id', sa.Integer(), sa.ForeignKey('webhook_registrations.id'), nullable=False, index=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('request_payload', sa.JSON(), nullable=False),
        sa.Column('response_body', sa.JSON(), nullable=True),
        sa.Column('status_code', sa.Integer(), nullable=True),
        sa.Column('response_time_ms', sa.Float(), nullable=False),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now(), index=True),
    )
    op.create_index('ix_webhook_calls_tenant_created', 'webhook_calls', ['tenant_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_webhook_calls_tenant_created', table_name='webhook_calls')
    op.drop_table('webhook_calls')
    op.drop_table('webhook_registrations')
    op.drop_table('handoff_messages')
    op.drop_index('ix_handoffs_tenant_status', table_name='handoffs')
    op.drop_table('handoffs')
    op.drop_table('human_agents')
    op.drop_table('users')
    op.drop_table('tenants')
