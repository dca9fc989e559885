"""create term_progress and review_history tables

Revision ID: d4e5f6a7b8c9
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'd4e5f6a7b8c9'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the SM-2 schedule table and its review audit log."""
    op.create_table('term_progress',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user', sa.String(), nullable=False),
        sa.Column('term_id', sa.String(), nullable=False),
        sa.Column('repetitions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ease_factor', sa.Float(), nullable=False, server_default='2.5'),
        sa.Column('interval_days', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('next_review_at', sa.DateTime(), nullable=False),
        sa.Column('last_reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('times_correct', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('times_incorrect', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('longest_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('mastery_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user', 'term_id', name='uq_term_progress_user_term'),
    )
    op.create_index('ix_term_progress_user_next_review', 'term_progress', ['user', 'next_review_at'])

    op.create_table('review_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user', sa.String(), nullable=False),
        sa.Column('term_id', sa.String(), nullable=False),
        sa.Column('quality', sa.Integer(), nullable=False),
        sa.Column('correct', sa.Boolean(), nullable=False),
        sa.Column('time_taken_ms', sa.Integer(), nullable=True),
        sa.Column('repetitions_before', sa.Integer(), nullable=False),
        sa.Column('ease_factor_before', sa.Float(), nullable=False),
        sa.Column('interval_days_before', sa.Integer(), nullable=False),
        sa.Column('mastery_level_before', sa.Integer(), nullable=False),
        sa.Column('repetitions_after', sa.Integer(), nullable=False),
        sa.Column('ease_factor_after', sa.Float(), nullable=False),
        sa.Column('interval_days_after', sa.Integer(), nullable=False),
        sa.Column('mastery_level_after', sa.Integer(), nullable=False),
        sa.Column('reviewed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_review_history_user_time', 'review_history', ['user', 'reviewed_at'])


def downgrade() -> None:
    """Drop the review audit log and the schedule table."""
    op.drop_index('ix_review_history_user_time', table_name='review_history')
    op.drop_table('review_history')
    op.drop_index('ix_term_progress_user_next_review', table_name='term_progress')
    op.drop_table('term_progress')
