"""Contents table

Revision ID: 001
Revises: 
Create Date: 2025-08-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'contents',
        sa.Column('content_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('origin_file_name', sa.String(), nullable=True),
        sa.Column('file_path', sa.String(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('scene_id', sa.String(), nullable=True),
        sa.Column('use_at', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('content_id')
    )
    op.create_index(op.f('ix_contents_created_at'), 'contents', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_contents_created_at'), table_name='contents')
    op.drop_table('contents')
