"""Initial schema - users, instances, provisioning, integrations, billing, chat

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), unique=True, nullable=False),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('stripe_customer_id', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean, default=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'instances',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False, server_default='fly'),
        sa.Column('status', sa.String(20), nullable=False, server_default='CREATING'),
        sa.Column('region', sa.String(20), nullable=False, server_default='iad'),
        sa.Column('ai_model', sa.String(100), nullable=False, server_default='claude-sonnet-4-0'),
        sa.Column('fly_app_name', sa.String(100), nullable=True, unique=True),
        sa.Column('fly_machine_id', sa.String(100), nullable=True, unique=True),
        sa.Column('docker_container_id', sa.String(100), nullable=True, unique=True),
        sa.Column('docker_port', sa.Integer, nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('encrypted_telegram_bot_token', sa.Text, nullable=True),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_instances_user_id', 'instances', ['user_id'])
    op.create_index('ix_instances_status', 'instances', ['status'])

    op.create_table(
        'provisioning_tasks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('instance_id', sa.String(36), sa.ForeignKey('instances.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False, server_default='create'),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime, nullable=True),
        sa.Column('finished_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_provisioning_tasks_instance_id', 'provisioning_tasks', ['instance_id'])
    op.create_index('ix_provisioning_tasks_status', 'provisioning_tasks', ['status'])

    op.create_table(
        'integrations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('slug', sa.String(50), unique=True, nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text, nullable=False, server_default=''),
        sa.Column('category', sa.String(50), nullable=False, server_default='productivity'),
        sa.Column('icon_url', sa.String(500), nullable=True),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('auth_type', sa.String(20), nullable=False, server_default='oauth2'),
        sa.Column('oauth_scopes', sa.JSON, nullable=False),
        sa.Column('is_official', sa.Boolean, default=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_integrations_provider', 'integrations', ['provider'])

    op.create_table(
        'user_integrations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('integration_id', sa.String(36), sa.ForeignKey('integrations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('encrypted_access_token', sa.Text, nullable=False),
        sa.Column('encrypted_refresh_token', sa.Text, nullable=True),
        sa.Column('token_expires_at', sa.DateTime, nullable=True),
        sa.Column('account_identifier', sa.String(255), nullable=True),
        sa.Column('connected_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('last_refreshed_at', sa.DateTime, nullable=True),
        sa.UniqueConstraint('user_id', 'integration_id', name='uq_user_integrations_user_integration'),
    )
    op.create_index('ix_user_integrations_user_id', 'user_integrations', ['user_id'])

    op.create_table(
        'instance_integrations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('instance_id', sa.String(36), sa.ForeignKey('instances.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'user_integration_id', sa.String(36),
            sa.ForeignKey('user_integrations.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('enabled_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('instance_id', 'user_integration_id', name='uq_instance_integrations_binding'),
    )
    op.create_index('ix_instance_integrations_instance_id', 'instance_integrations', ['instance_id'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('stripe_customer_id', sa.String(100), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(100), nullable=False, unique=True),
        sa.Column('stripe_price_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('plan', sa.String(20), nullable=True),
        sa.Column('instance_limit', sa.Integer, nullable=False, server_default='1'),
        sa.Column('current_period_start', sa.DateTime, nullable=True),
        sa.Column('current_period_end', sa.DateTime, nullable=False),
        sa.Column('cancel_at_period_end', sa.Boolean, default=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])

    op.create_table(
        'chat_messages',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('instance_id', sa.String(36), sa.ForeignKey('instances.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_chat_messages_instance_user', 'chat_messages', ['instance_id', 'user_id'])


def downgrade() -> None:
    op.drop_index('ix_chat_messages_instance_user', table_name='chat_messages')
    op.drop_table('chat_messages')
    op.drop_index('ix_subscriptions_user_id', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_index('ix_instance_integrations_instance_id', table_name='instance_integrations')
    op.drop_table('instance_integrations')
    op.drop_index('ix_user_integrations_user_id', table_name='user_integrations')
    op.drop_table('user_integrations')
    op.drop_index('ix_integrations_provider', table_name='integrations')
    op.drop_table('integrations')
    op.drop_index('ix_provisioning_tasks_status', table_name='provisioning_tasks')
    op.drop_index('ix_provisioning_tasks_instance_id', table_name='provisioning_tasks')
    op.drop_table('provisioning_tasks')
    op.drop_index('ix_instances_status', table_name='instances')
    op.drop_index('ix_instances_user_id', table_name='instances')
    op.drop_table('instances')
    op.drop_table('users')
