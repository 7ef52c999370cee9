"""Follow-up engine tables

Revision ID: 0001_followup_engine
Revises: 
Create Date: 2026-10-17

Creates sequences, steps, executions, message logs, and conversation links.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from followups.db.types import UTCDateTime


# revision identifiers, used by Alembic.
revision: str = '0001_followup_engine'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Create follow-up tables."""

    # ==========================================================================
    # Sequences and steps
    # ==========================================================================
    op.create_table(
        'follow_up_sequences',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('trigger_type', sa.String(30), nullable=False),
        sa.Column('trigger_config', _json(), nullable=False),
        sa.Column('strategy', sa.String(20), nullable=False, server_default='moderate'),
        sa.Column('conditions', _json(), nullable=False),
        sa.Column('total_executions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', UTCDateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', UTCDateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_follow_up_sequences_org', 'follow_up_sequences', ['organization_id', 'created_at'])
    op.create_index('idx_follow_up_sequences_org_enabled', 'follow_up_sequences', ['organization_id', 'enabled'])

    op.create_table(
        'follow_up_steps',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'sequence_id',
            sa.Uuid(),
            sa.ForeignKey('follow_up_sequences.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('step_order', sa.Integer(), nullable=False),
        sa.Column('delay_amount', sa.Integer(), nullable=False),
        sa.Column('delay_unit', sa.String(10), nullable=False),
        sa.Column('message_template', sa.Text(), nullable=False),
        sa.Column('available_variables', _json(), nullable=False),
        sa.Column('send_conditions', _json(), nullable=True),
        sa.Column('created_at', UTCDateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('sequence_id', 'step_order', name='uq_follow_up_step_order'),
    )

    # ==========================================================================
    # Executions and message logs
    # ==========================================================================
    op.create_table(
        'follow_up_executions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'sequence_id',
            sa.Uuid(),
            sa.ForeignKey('follow_up_sequences.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('contact_phone', sa.String(50), nullable=False),
        sa.Column('contact_name', sa.String(200), nullable=True),
        sa.Column('conversation_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('current_step', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_scheduled_at', UTCDateTime(), nullable=True),
        sa.Column('claimed_until', UTCDateTime(), nullable=True),
        sa.Column('failed_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversation_context', _json(), nullable=False),
        sa.Column('trigger_data', _json(), nullable=False),
        sa.Column('started_at', UTCDateTime(), nullable=False),
        sa.Column('completed_at', UTCDateTime(), nullable=True),
        sa.Column('last_message_sent_at', UTCDateTime(), nullable=True),
        sa.Column('converted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('total_messages_sent', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('idx_follow_up_executions_due', 'follow_up_executions', ['status', 'next_scheduled_at'])
    op.create_index('idx_follow_up_executions_org', 'follow_up_executions', ['organization_id', 'started_at'])
    op.create_index('idx_follow_up_executions_sequence', 'follow_up_executions', ['sequence_id', 'contact_phone'])
    op.create_index('idx_follow_up_executions_conversation', 'follow_up_executions', ['conversation_id'])

    op.create_table(
        'follow_up_message_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'execution_id',
            sa.Uuid(),
            sa.ForeignKey('follow_up_executions.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('step_order', sa.Integer(), nullable=False),
        sa.Column('sent_at', UTCDateTime(), nullable=False),
        sa.Column('message_sent', sa.Text(), nullable=False),
        sa.Column('delivery_status', sa.String(20), nullable=False),
        sa.Column('external_message_id', sa.String(255), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('contact_responded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('response_received_at', UTCDateTime(), nullable=True),
        sa.Column('response_text', sa.Text(), nullable=True),
    )
    op.create_index(
        'idx_follow_up_message_logs_execution', 'follow_up_message_logs', ['execution_id', 'step_order']
    )

    # ==========================================================================
    # Conversation links
    # ==========================================================================
    op.create_table(
        'follow_up_conversation_links',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('conversation_id', sa.String(100), nullable=False),
        sa.Column('inbox_id', sa.String(100), nullable=True),
        sa.Column('account_id', sa.String(100), nullable=True),
        sa.Column('contact_ref', sa.String(100), nullable=True),
        sa.Column('awaiting_response', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_outbound_at', UTCDateTime(), nullable=True),
        sa.Column('last_inbound_at', UTCDateTime(), nullable=True),
        sa.Column('created_at', UTCDateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', UTCDateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('organization_id', 'conversation_id', name='uq_follow_up_conversation_link'),
    )
    op.create_index(
        'idx_follow_up_conversation_links_awaiting',
        'follow_up_conversation_links',
        ['organization_id', 'awaiting_response', 'last_outbound_at'],
    )


def downgrade() -> None:
    """Drop follow-up tables."""
    op.drop_table('follow_up_conversation_links')
    op.drop_table('follow_up_message_logs')
    op.drop_table('follow_up_executions')
    op.drop_table('follow_up_steps')
    op.drop_table('follow_up_sequences')
