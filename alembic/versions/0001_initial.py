"""Initial migration

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-12 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    # 1. Matches table
    op.create_table('matches',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('participant_a', sa.String(length=128), nullable=False),
        sa.Column('participant_b', sa.String(length=128), nullable=False),
        sa.Column('pair_key', sa.String(length=257), nullable=False),
        sa.Column('venue_id', sa.String(length=128), nullable=False),
        sa.Column('venue_name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('expired', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('expired_at', sa.BigInteger(), nullable=True),
        sa.Column('message_count_a', sa.Integer(), server_default='0', nullable=False),
        sa.Column('message_count_b', sa.Integer(), server_default='0', nullable=False),
        sa.Column('contact_shared', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('contact_shared_by', sa.String(length=128), nullable=True),
        sa.Column('contact_payload', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('reconnected_at', sa.BigInteger(), nullable=True),
        sa.Column('reconnected_match_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('previous_match_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('messages_purged_at', sa.BigInteger(), nullable=True),
        sa.CheckConstraint('participant_a <> participant_b', name='chk_match_no_self'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_matches_participant_a'), 'matches', ['participant_a'], unique=False)
    op.create_index(op.f('ix_matches_participant_b'), 'matches', ['participant_b'], unique=False)
    op.create_index(op.f('ix_matches_pair_key'), 'matches', ['pair_key'], unique=False)
    op.create_index(op.f('ix_matches_created_at'), 'matches', ['created_at'], unique=False)
    op.create_index('ix_match_expiry_scan', 'matches', ['expired', 'created_at'], unique=False)
    # At most one open match per pair
    op.create_index(
        'uq_match_open_pair',
        'matches',
        ['pair_key'],
        unique=True,
        postgresql_where=sa.text('expired = false')
    )

    # 2. Match messages table
    op.create_table('match_messages',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('match_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('sender_id', sa.String(length=128), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('sent_at', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['match_id'], ['matches.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_match_messages_match_id'), 'match_messages', ['match_id'], unique=False)

    # 3. Interests table
    op.create_table('interests',
        sa.Column('from_user_id', sa.String(length=128), nullable=False),
        sa.Column('to_user_id', sa.String(length=128), nullable=False),
        sa.Column('venue_id', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('consumed_match_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('consumed_at', sa.BigInteger(), nullable=True),
        sa.CheckConstraint('from_user_id <> to_user_id', name='chk_interest_no_self'),
        sa.PrimaryKeyConstraint('from_user_id', 'to_user_id', 'venue_id')
    )
    op.create_index('ix_interest_target_venue', 'interests', ['to_user_id', 'venue_id'], unique=False)

    # 4. Reconnect requests table
    op.create_table('reconnect_requests',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('match_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('requested_at', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['match_id'], ['matches.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('match_id', 'user_id', name='uq_reconnect_match_user')
    )
    op.create_index(op.f('ix_reconnect_requests_match_id'), 'reconnect_requests', ['match_id'], unique=False)
    op.create_index(op.f('ix_reconnect_requests_user_id'), 'reconnect_requests', ['user_id'], unique=False)

    # 5. Rate limit counters table
    op.create_table('rate_limit_counters',
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('window_reset_at', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('user_id', 'action')
    )


def downgrade() -> None:
    op.drop_table('rate_limit_counters')
    op.drop_index(op.f('ix_reconnect_requests_user_id'), table_name='reconnect_requests')
    op.drop_index(op.f('ix_reconnect_requests_match_id'), table_name='reconnect_requests')
    op.drop_table('reconnect_requests')
    op.drop_index('ix_interest_target_venue', table_name='interests')
    op.drop_table('interests')
    op.drop_index(op.f('ix_match_messages_match_id'), table_name='match_messages')
    op.drop_table('match_messages')
    op.drop_index('uq_match_open_pair', table_name='matches')
    op.drop_index('ix_match_expiry_scan', table_name='matches')
    op.drop_index(op.f('ix_matches_created_at'), table_name='matches')
    op.drop_index(op.f('ix_matches_pair_key'), table_name='matches')
    op.drop_index(op.f('ix_matches_participant_b'), table_name='matches')
    op.drop_index(op.f('ix_matches_participant_a'), table_name='matches')
    op.drop_table('matches')
