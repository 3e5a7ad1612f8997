"""add_workflow_engine

Revision ID: f3a91c6d2b07
Revises:
Create Date: 2026-10-19 09:00:12.402118

Initial schema for the workflow engine
- surgeries, users: tenant boundary and role checks
- audit_logs: governance trail for approvals, overrides and deletions
- workflow_templates, workflow_nodes, workflow_answer_options,
  workflow_node_links: template graphs (global and per surgery)
- workflow_instances, workflow_answer_records: runs and their answer trail

Enum columns are stored as VARCHAR holding the enum member name.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'f3a91c6d2b07'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""

    # Create surgeries table
    op.create_table(
        'surgeries',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False, comment='Practice name'),
        sa.Column('slug', sa.String(100), nullable=False, comment="URL-friendly identifier (e.g., 'riverside-medical')"),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('workflows_enabled', sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index('ix_surgeries_id', 'surgeries', ['id'])
    op.create_index('ix_surgeries_name', 'surgeries', ['name'])
    op.create_index('ix_surgeries_slug', 'surgeries', ['slug'], unique=True)

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('surgery_id', postgresql.UUID(as_uuid=True), nullable=True, comment='Surgery ID (null for super_admin)'),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('role', sa.String(13), nullable=False, server_default='STANDARD'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['surgery_id'], ['surgeries.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_surgery_id', 'users', ['surgery_id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('surgery_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('resource_type', sa.String(100), nullable=False),
        sa.Column('resource_id', sa.String(255), nullable=True),
        sa.Column('details', sa.JSON, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['surgery_id'], ['surgeries.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_surgery_id', 'audit_logs', ['surgery_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource_type', 'audit_logs', ['resource_type'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])

    # Create workflow_templates table
    op.create_table(
        'workflow_templates',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('surgery_id', postgresql.UUID(as_uuid=True), nullable=True, comment='Owning surgery (null for global defaults)'),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('icon_key', sa.String(100), nullable=True),
        sa.Column('colour_hex', sa.String(7), nullable=True),
        sa.Column('workflow_type', sa.String(10), nullable=False, server_default='SUPPORTING'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('approval_status', sa.String(10), nullable=False, server_default='DRAFT'),
        sa.Column('approved_by_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('approved_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('last_edited_by_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('last_edited_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('source_template_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('family_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('previous_version_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('lock_version', sa.Integer, nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['surgery_id'], ['surgeries.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['approved_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['last_edited_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['source_template_id'], ['workflow_templates.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['previous_version_id'], ['workflow_templates.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_workflow_templates_id', 'workflow_templates', ['id'])
    op.create_index('ix_workflow_templates_surgery_id', 'workflow_templates', ['surgery_id'])
    op.create_index('ix_workflow_templates_is_active', 'workflow_templates', ['is_active'])
    op.create_index('ix_workflow_templates_approval_status', 'workflow_templates', ['approval_status'])
    op.create_index('ix_workflow_templates_source_template_id', 'workflow_templates', ['source_template_id'])
    op.create_index('ix_workflow_templates_family_id', 'workflow_templates', ['family_id'])

    # Create workflow_nodes table
    op.create_table(
        'workflow_nodes',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('template_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('node_type', sa.String(11), nullable=False),
        sa.Column('title', sa.Text, nullable=False),
        sa.Column('body', sa.Text, nullable=True),
        sa.Column('sort_order', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_start', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('action_key', sa.String(27), nullable=True),
        sa.Column('default_next_node_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('position_x', sa.Integer, nullable=True),
        sa.Column('position_y', sa.Integer, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['template_id'], ['workflow_templates.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['default_next_node_id'], ['workflow_nodes.id']),
    )
    op.create_index('ix_workflow_nodes_id', 'workflow_nodes', ['id'])
    op.create_index('ix_workflow_nodes_template_id', 'workflow_nodes', ['template_id'])

    # Create workflow_answer_options table
    op.create_table(
        'workflow_answer_options',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('node_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('label', sa.Text, nullable=False),
        sa.Column('value_key', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('next_node_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('action_key', sa.String(27), nullable=True),
        sa.Column('sort_order', sa.Integer, nullable=False, server_default='0'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['node_id'], ['workflow_nodes.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['next_node_id'], ['workflow_nodes.id']),
        sa.UniqueConstraint('node_id', 'value_key', name='uq_workflow_answer_options_node_value_key'),
    )
    op.create_index('ix_workflow_answer_options_id', 'workflow_answer_options', ['id'])
    op.create_index('ix_workflow_answer_options_node_id', 'workflow_answer_options', ['node_id'])
    op.create_index('ix_workflow_answer_options_next_node_id', 'workflow_answer_options', ['next_node_id'])

    # Create workflow_node_links table
    op.create_table(
        'workflow_node_links',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('node_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('template_id', postgresql.UUID(as_uuid=True), nullable=False, comment='Linked (target) workflow template'),
        sa.Column('label', sa.Text, nullable=False),
        sa.Column('sort_order', sa.Integer, nullable=False, server_default='0'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['node_id'], ['workflow_nodes.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['template_id'], ['workflow_templates.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('node_id', 'template_id', name='uq_workflow_node_links_node_template'),
    )
    op.create_index('ix_workflow_node_links_id', 'workflow_node_links', ['id'])
    op.create_index('ix_workflow_node_links_node_id', 'workflow_node_links', ['node_id'])
    op.create_index('ix_workflow_node_links_template_id', 'workflow_node_links', ['template_id'])

    # Create workflow_instances table
    op.create_table(
        'workflow_instances',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('surgery_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('template_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('started_by_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('status', sa.String(9), nullable=False, server_default='ACTIVE'),
        sa.Column('reference', sa.String(255), nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('current_node_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('graph_snapshot', sa.JSON, nullable=False),
        sa.Column('outcome_action_key', sa.String(27), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancelled_by_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('lock_version', sa.Integer, nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['surgery_id'], ['surgeries.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['template_id'], ['workflow_templates.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['started_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['cancelled_by_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_workflow_instances_id', 'workflow_instances', ['id'])
    op.create_index('ix_workflow_instances_surgery_id', 'workflow_instances', ['surgery_id'])
    op.create_index('ix_workflow_instances_template_id', 'workflow_instances', ['template_id'])
    op.create_index('ix_workflow_instances_status', 'workflow_instances', ['status'])

    # Create workflow_answer_records table
    op.create_table(
        'workflow_answer_records',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('instance_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('step_index', sa.Integer, nullable=False),
        sa.Column('node_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('node_title', sa.Text, nullable=False),
        sa.Column('node_type', sa.String(11), nullable=False),
        sa.Column('answer_option_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('answer_value_key', sa.String(255), nullable=True),
        sa.Column('answer_label', sa.Text, nullable=True),
        sa.Column('free_text_note', sa.Text, nullable=True),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['instance_id'], ['workflow_instances.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('instance_id', 'step_index', name='uq_workflow_answer_records_instance_step'),
    )
    op.create_index('ix_workflow_answer_records_id', 'workflow_answer_records', ['id'])
    op.create_index('ix_workflow_answer_records_instance_id', 'workflow_answer_records', ['instance_id'])
    op.create_index('ix_workflow_answer_records_node_id', 'workflow_answer_records', ['node_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('workflow_answer_records')
    op.drop_table('workflow_instances')
    op.drop_table('workflow_node_links')
    op.drop_table('workflow_answer_options')
    op.drop_table('workflow_nodes')
    op.drop_table('workflow_templates')
    op.drop_table('audit_logs')
    op.drop_table('users')
    op.drop_table('surgeries')
