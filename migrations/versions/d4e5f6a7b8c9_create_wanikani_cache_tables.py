"""create wanikani cache tables

Revision ID: d4e5f6a7b8c9
Revises:
Create Date: 2026-10-18 09:30:00.000000

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
    """Create user, reviews, subjects and subject_details tables."""
    op.create_table('user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('max_level', sa.Integer(), nullable=False),
        sa.Column('profile_url', sa.String(), nullable=True),
        sa.Column('fetched_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('reviews',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('subject_id', sa.Integer(), nullable=False),
        sa.Column('subject_type', sa.String(), nullable=False),
        sa.Column('srs_stage', sa.Integer(), nullable=True),
        sa.Column('available_at', sa.DateTime(), nullable=True),
        sa.Column('fetched_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('subjects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('characters', sa.String(), nullable=True),
        sa.Column('meanings', sa.JSON(), nullable=True),
        sa.Column('readings', sa.JSON(), nullable=True),
        sa.Column('srs_stage', sa.Integer(), nullable=True),
        sa.Column('complete_level', sa.Boolean(), nullable=True),
        sa.Column('fetched_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_subjects_level', 'subjects', ['level'])
    op.create_table('subject_details',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('characters', sa.String(), nullable=True),
        sa.Column('meanings', sa.JSON(), nullable=True),
        sa.Column('readings', sa.JSON(), nullable=True),
        sa.Column('component_subject_ids', sa.JSON(), nullable=True),
        sa.Column('amalgamation_subject_ids', sa.JSON(), nullable=True),
        sa.Column('meaning_mnemonic', sa.Text(), nullable=True),
        sa.Column('meaning_hint', sa.Text(), nullable=True),
        sa.Column('reading_mnemonic', sa.Text(), nullable=True),
        sa.Column('reading_hint', sa.Text(), nullable=True),
        sa.Column('context_sentences', sa.JSON(), nullable=True),
        sa.Column('parts_of_speech', sa.JSON(), nullable=True),
        sa.Column('fetched_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    """Drop the cache tables."""
    op.drop_table('subject_details')
    op.drop_index('ix_subjects_level', table_name='subjects')
    op.drop_table('subjects')
    op.drop_table('reviews')
    op.drop_table('user')
