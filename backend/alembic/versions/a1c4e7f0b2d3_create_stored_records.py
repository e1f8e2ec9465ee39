"""Create stored_records table (keyed JSON documents for rooms, participants, invitations)

Revision ID: a1c4e7f0b2d3
Revises:
Create Date: 2026-10-19T10:12:44.381920
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1c4e7f0b2d3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- stored_records ---
    op.create_table(
        'stored_records',
        sa.Column('seq', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('collection', sa.String(length=64), nullable=False),
        sa.Column('key', sa.String(length=160), nullable=False),
        sa.Column('document', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('seq'),
        sa.UniqueConstraint('collection', 'key', name='uq_stored_records_collection_key'),
    )
    op.create_index('idx_stored_records_collection_seq', 'stored_records', ['collection', 'seq'])


def downgrade() -> None:
    op.drop_index('idx_stored_records_collection_seq', table_name='stored_records')
    op.drop_table('stored_records')
