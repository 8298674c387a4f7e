"""Initial schema: organizations, teams, users, tickets, SLA and escalation.

Revision ID: 001
Revises:
Create Date: 2026-10-18

WHAT: Creates every table of the helpdesk authorization and SLA engine.

WHY: The engine needs:
- Organizations, teams (with a leaders link table) and users for scope
- Tickets with a version column for optimistic concurrency, plus followers,
  comments, feedback and history
- SLA policies per priority
- Escalation rules and the execution ledger, unique per
  (rule, ticket, state fingerprint)
- Immutable audit logs
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ticket_status = sa.Enum(
    "open", "in_progress", "waiting_for_customer", "resolved", "closed",
    name="ticketstatus",
)
ticket_priority = sa.Enum("low", "medium", "high", "urgent", name="ticketpriority")
ticket_history_action = sa.Enum(
    "created", "status_changed", "priority_changed", "assigned", "custom_sla_changed",
    "follower_added", "follower_removed", "commented", "feedback_submitted",
    "escalation_executed", "escalation_failed",
    name="tickethistoryaction",
)
condition_type = sa.Enum(
    "sla_breach", "time_in_status", "priority_level", "no_response", "customer_rating",
    name="escalationconditiontype",
)
action_type = sa.Enum(
    "notify_manager", "reassign_ticket", "increase_priority", "add_follower", "send_email",
    name="escalationactiontype",
)
execution_status = sa.Enum("evaluating", "executed", "failed", name="escalationexecutionstatus")
audit_action = sa.Enum(
    "PERMISSION_DENIED", "ACCESS_DENIED", "CREATE", "UPDATE", "DELETE",
    "TICKET_STATUS_CHANGED", "TICKET_PRIORITY_CHANGED", "TICKET_ASSIGNED", "TICKET_SLA_OVERRIDDEN",
    "ESCALATION_EXECUTED", "ESCALATION_FAILED",
    name="auditaction",
)


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_organizations_id', 'organizations', ['id'])
    op.create_index('ix_organizations_name', 'organizations', ['name'])

    op.create_table(
        'teams',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('org_id', 'name', name='uq_teams_org_name'),
    )
    op.create_index('ix_teams_id', 'teams', ['id'])
    op.create_index('ix_teams_org_id', 'teams', ['org_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('team_id', sa.Integer(), sa.ForeignKey('teams.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_org_id', 'users', ['org_id'])
    op.create_index('ix_users_team_id', 'users', ['team_id'])

    op.create_table(
        'team_leaders',
        sa.Column('team_id', sa.Integer(), sa.ForeignKey('teams.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_team_leaders_user_id', 'team_leaders', ['user_id'])

    op.create_table(
        'tickets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('ticket_number', sa.Integer(), nullable=False),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assigned_to_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('team_id', sa.Integer(), sa.ForeignKey('teams.id'), nullable=True),
        sa.Column('subject', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('status', ticket_status, nullable=False),
        sa.Column('priority', ticket_priority, nullable=False),
        sa.Column('sla_due_at', sa.DateTime(), nullable=True),
        sa.Column('custom_sla_due_at', sa.DateTime(), nullable=True),
        sa.Column('sla_started_at', sa.DateTime(), nullable=True),
        sa.Column('status_changed_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.UniqueConstraint('org_id', 'ticket_number', name='uq_tickets_org_number'),
    )
    op.create_index('ix_tickets_org_id', 'tickets', ['org_id'])
    op.create_index('ix_tickets_team_id', 'tickets', ['team_id'])
    op.create_index('ix_tickets_status', 'tickets', ['status'])
    op.create_index('ix_tickets_priority', 'tickets', ['priority'])
    op.create_index('ix_tickets_created_by', 'tickets', ['created_by_user_id'])
    op.create_index('ix_tickets_assigned_to', 'tickets', ['assigned_to_user_id'])
    op.create_index('ix_tickets_sla_due_at', 'tickets', ['sla_due_at'])

    op.create_table(
        'ticket_followers',
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('added_by_user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_ticket_followers_user_id', 'ticket_followers', ['user_id'])

    op.create_table(
        'ticket_comments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_internal', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_ticket_comments_ticket_id', 'ticket_comments', ['ticket_id'])
    op.create_index('ix_ticket_comments_created_at', 'ticket_comments', ['created_at'])

    op.create_table(
        'ticket_feedback',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('rating >= 1 AND rating <= 5', name='ck_ticket_feedback_rating'),
    )

    op.create_table(
        'ticket_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', ticket_history_action, nullable=False),
        sa.Column('field_name', sa.String(length=100), nullable=True),
        sa.Column('old_value', sa.Text(), nullable=True),
        sa.Column('new_value', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_ticket_history_ticket_id', 'ticket_history', ['ticket_id'])

    op.create_table(
        'sla_policies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        # Type already created with the tickets table
        sa.Column(
            'priority',
            postgresql.ENUM(*ticket_priority.enums, name='ticketpriority', create_type=False),
            nullable=False,
        ),
        sa.Column('response_time_hours', sa.Integer(), nullable=False),
        sa.Column('resolution_time_hours', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index(
        'ix_sla_policies_org_priority_active', 'sla_policies', ['org_id', 'priority', 'is_active']
    )

    op.create_table(
        'escalation_rules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('condition_type', condition_type, nullable=False),
        sa.Column('condition_value', sa.JSON(), nullable=False),
        sa.Column('action_type', action_type, nullable=False),
        sa.Column('action_config', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_escalation_rules_org_active', 'escalation_rules', ['org_id', 'is_active'])

    op.create_table(
        'escalation_executions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rule_id', sa.Integer(), sa.ForeignKey('escalation_rules.id', ondelete='CASCADE'), nullable=False),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('state_fingerprint', sa.String(length=64), nullable=False),
        sa.Column('status', execution_status, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('result', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('executed_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint(
            'rule_id', 'ticket_id', 'state_fingerprint', name='uq_escalation_execution_occurrence'
        ),
    )
    op.create_index('ix_escalation_executions_ticket_id', 'escalation_executions', ['ticket_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', audit_action, nullable=False),
        sa.Column('resource_type', sa.String(length=100), nullable=False),
        sa.Column('resource_id', sa.Integer(), nullable=True),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource_type', 'audit_logs', ['resource_type'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])
    op.create_index('ix_audit_logs_org_id', 'audit_logs', ['org_id'])
    op.create_index('ix_audit_logs_ip_address', 'audit_logs', ['ip_address'])


def downgrade() -> None:
    """Drop all tables and enum types."""
    op.drop_table('audit_logs')
    op.drop_table('escalation_executions')
    op.drop_table('escalation_rules')
    op.drop_table('sla_policies')
    op.drop_table('ticket_history')
    op.drop_table('ticket_feedback')
    op.drop_table('ticket_comments')
    op.drop_table('ticket_followers')
    op.drop_table('tickets')
    op.drop_table('team_leaders')
    op.drop_table('users')
    op.drop_table('teams')
    op.drop_table('organizations')

    bind = op.get_bind()
    for enum_type in (
        audit_action,
        execution_status,
        action_type,
        condition_type,
        ticket_history_action,
        ticket_priority,
        ticket_status,
    ):
        enum_type.drop(bind, checkfirst=True)
