"""Add documents table.

Revision ID: 001_documents
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_documents'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'documents',
        sa.Column('path', sa.String(512), nullable=False),
        sa.Column('collection_group', sa.String(128), nullable=False),
        sa.Column('parent_path', sa.String(512), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('path'),
    )
    op.create_index('ix_documents_collection_group', 'documents', ['collection_group'])
    op.create_index('ix_documents_parent_path', 'documents', ['parent_path'])


def downgrade() -> None:
    op.drop_index('ix_documents_parent_path', table_name='documents')
    op.drop_index('ix_documents_collection_group', table_name='documents')
    op.drop_table('documents')
