"""Create governance tables

Revision ID: create_governance_tables
Revises:
Create Date: 2026-10-19

This migration adds:
- dao_organizations: DAOs and their governance settings
- dao_members: Membership with governance token balances
- dao_proposals: Proposals with power-weighted running tallies
- dao_votes: One vote per member per proposal
- loyalty_change_requests: Loyalty parameter changes bridged to proposals
- loyalty_parameters: Applied loyalty configuration
- governance_events: Audit trail
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'create_governance_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Organizations
    op.create_table(
        'dao_organizations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('governance_token_symbol', sa.String(10), nullable=False),
        sa.Column('governance_token_decimals', sa.Integer(), nullable=False, server_default='9'),
        sa.Column('min_proposal_threshold', sa.Numeric(38, 9), nullable=False, server_default='0'),
        sa.Column('voting_period_seconds', sa.Integer(), nullable=False),
        sa.Column('execution_delay_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quorum_percentage', sa.Float(), nullable=False),
        sa.Column('super_majority_threshold', sa.Float(), nullable=False),
        sa.Column('default_voting_type', sa.String(20), nullable=False, server_default='simple_majority'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Members
    op.create_table(
        'dao_members',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('dao_id', sa.String(36), sa.ForeignKey('dao_organizations.id'), nullable=False, index=True),
        sa.Column('user_id', sa.String(64), nullable=False, index=True),
        sa.Column('wallet_address', sa.String(44), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='member'),
        sa.Column('governance_tokens', sa.Numeric(38, 9), nullable=False, server_default='0'),
        sa.Column('voting_power', sa.Numeric(38, 9), nullable=False, server_default='0'),
        sa.Column('joined_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('last_active_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.UniqueConstraint('dao_id', 'user_id', name='uq_dao_members_dao_user'),
    )

    # Proposals
    op.create_table(
        'dao_proposals',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('dao_id', sa.String(36), sa.ForeignKey('dao_organizations.id'), nullable=False, index=True),
        sa.Column('proposer_id', sa.String(36), sa.ForeignKey('dao_members.id'), nullable=False, index=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('full_description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(50), nullable=False, index=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('voting_type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, index=True),
        sa.Column('start_time', sa.DateTime(), nullable=True),
        sa.Column('end_time', sa.DateTime(), nullable=True, index=True),
        sa.Column('total_votes', sa.Numeric(38, 9), nullable=False, server_default='0'),
        sa.Column('yes_votes', sa.Numeric(38, 9), nullable=False, server_default='0'),
        sa.Column('no_votes', sa.Numeric(38, 9), nullable=False, server_default='0'),
        sa.Column('abstain_votes', sa.Numeric(38, 9), nullable=False, server_default='0'),
        sa.Column('participation_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('executed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_dao_proposals_dao_status', 'dao_proposals', ['dao_id', 'status'])

    # Votes
    op.create_table(
        'dao_votes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('proposal_id', sa.String(36), sa.ForeignKey('dao_proposals.id'), nullable=False, index=True),
        sa.Column('voter_id', sa.String(36), sa.ForeignKey('dao_members.id'), nullable=False, index=True),
        sa.Column('choice', sa.String(10), nullable=False),
        sa.Column('voting_power', sa.Numeric(38, 9), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('proposal_id', 'voter_id', name='uq_dao_votes_proposal_voter'),
    )

    # Loyalty change requests
    op.create_table(
        'loyalty_change_requests',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('dao_id', sa.String(36), sa.ForeignKey('dao_organizations.id'), nullable=False, index=True),
        sa.Column('change_type', sa.String(50), nullable=False, index=True),
        sa.Column('parameter_name', sa.String(100), nullable=False),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('proposed_by', sa.String(36), sa.ForeignKey('dao_members.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, index=True),
        sa.Column('proposal_id', sa.String(36), sa.ForeignKey('dao_proposals.id'), nullable=True, unique=True),
        sa.Column('deferred_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('implemented_at', sa.DateTime(), nullable=True),
    )

    # Applied loyalty configuration
    op.create_table(
        'loyalty_parameters',
        sa.Column('name', sa.String(100), primary_key=True),
        sa.Column('value', sa.JSON(), nullable=True),
        sa.Column('updated_by_proposal', sa.String(36), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Audit trail
    op.create_table(
        'governance_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('dao_id', sa.String(36), nullable=False, index=True),
        sa.Column('event_type', sa.String(40), nullable=False, index=True),
        sa.Column('actor', sa.String(64), nullable=True),
        sa.Column('reference_id', sa.String(36), nullable=True),
        sa.Column('reference_type', sa.String(30), nullable=True),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_governance_events_reference', 'governance_events', ['reference_type', 'reference_id'])


def downgrade() -> None:
    op.drop_index('ix_governance_events_reference', table_name='governance_events')
    op.drop_table('governance_events')
    op.drop_table('loyalty_parameters')
    op.drop_table('loyalty_change_requests')
    op.drop_table('dao_votes')
    op.drop_index('ix_dao_proposals_dao_status', table_name='dao_proposals')
    op.drop_table('dao_proposals')
    op.drop_table('dao_members')
    op.drop_table('dao_organizations')
