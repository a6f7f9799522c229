"""initial schema - notes and delivery attempts

Revision ID: 001
Revises: 
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create notes table (status as VARCHAR, not enum)
    op.create_table(
        'notes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('release_at', sa.DateTime(), nullable=False),
        sa.Column('webhook_url', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('locked_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text("(now() at time zone 'utc')")),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text("(now() at time zone 'utc')")),
    )
    op.create_index('ix_notes_release_at', 'notes', ['release_at'])
    op.create_index('ix_notes_status_release_at', 'notes', ['status', 'release_at'])

    # Create note_attempts table (append-only, ordered by position)
    op.create_table(
        'note_attempts',
        sa.Column('note_id', sa.String(36), sa.ForeignKey('notes.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('position', sa.Integer(), primary_key=True),
        sa.Column('at', sa.DateTime(), nullable=False),
        sa.Column('status_code', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ok', sa.Boolean(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('note_attempts')
    op.drop_index('ix_notes_status_release_at', table_name='notes')
    op.drop_index('ix_notes_release_at', table_name='notes')
    op.drop_table('notes')
