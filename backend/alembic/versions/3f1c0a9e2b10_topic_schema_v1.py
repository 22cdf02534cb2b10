"""Topic schema v1: topics, members, notes

Revision ID: 3f1c0a9e2b10
Revises:
Create Date: 2026-03-02 09:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3f1c0a9e2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the base topic, member and note tables."""
    op.create_table(
        'note',
        sa.Column('id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('user_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('title', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('excerpt', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('content_text', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('site_name', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('source_url', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('content_type', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('cover_image_url', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('event_time', sa.DateTime(), nullable=True),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_note_user_id'), 'note', ['user_id'], unique=False)

    op.create_table(
        'knowledge_topic',
        sa.Column('id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('user_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('title', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('keywords', sa.JSON(), nullable=True),
        sa.Column('summary_markdown', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('member_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('config', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_knowledge_topic_user_id'), 'knowledge_topic', ['user_id'], unique=False)

    op.create_table(
        'knowledge_topic_member',
        sa.Column('topic_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('note_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('user_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('topic_id', 'note_id'),
    )
    op.create_index(
        op.f('ix_knowledge_topic_member_user_id'), 'knowledge_topic_member', ['user_id'], unique=False
    )


def downgrade() -> None:
    """Drop the base tables."""
    op.drop_index(op.f('ix_knowledge_topic_member_user_id'), table_name='knowledge_topic_member')
    op.drop_table('knowledge_topic_member')
    op.drop_index(op.f('ix_knowledge_topic_user_id'), table_name='knowledge_topic')
    op.drop_table('knowledge_topic')
    op.drop_index(op.f('ix_note_user_id'), table_name='note')
    op.drop_table('note')
