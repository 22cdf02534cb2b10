"""Topic schema v2: curation columns, topic events, entity graph

Revision ID: 7d2e4b8c5a31
Revises: 3f1c0a9e2b10
Create Date: 2026-04-14 10:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '7d2e4b8c5a31'
down_revision: Union[str, Sequence[str], None] = '3f1c0a9e2b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add pin/archive and member curation columns, the event table and graph tables."""
    with op.batch_alter_table('knowledge_topic', schema=None) as batch_op:
        batch_op.add_column(sa.Column('pinned', sa.Boolean(), nullable=False, server_default=sa.false()))
        batch_op.add_column(sa.Column('pinned_at', sa.DateTime(), nullable=True))
        batch_op.add_column(sa.Column('archived', sa.Boolean(), nullable=False, server_default=sa.false()))
        batch_op.add_column(sa.Column('archived_at', sa.DateTime(), nullable=True))
        batch_op.add_column(sa.Column('last_ingested_at', sa.DateTime(), nullable=True))

    with op.batch_alter_table('knowledge_topic_member', schema=None) as batch_op:
        batch_op.add_column(
            sa.Column('source', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='auto')
        )
        batch_op.add_column(
            sa.Column('manual_state', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='none')
        )
        batch_op.add_column(sa.Column('event_time', sqlmodel.sql.sqltypes.AutoString(), nullable=True))
        batch_op.add_column(sa.Column('event_fingerprint', sqlmodel.sql.sqltypes.AutoString(), nullable=True))
        batch_op.add_column(sa.Column('evidence_rank', sa.Integer(), nullable=True))

    op.create_table(
        'knowledge_topic_event',
        sa.Column('id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('user_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('topic_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('event_time', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('title', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('summary', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('fingerprint', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('importance', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('source', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_knowledge_topic_event_user_id'), 'knowledge_topic_event', ['user_id'], unique=False)
    op.create_index(op.f('ix_knowledge_topic_event_topic_id'), 'knowledge_topic_event', ['topic_id'], unique=False)

    op.create_table(
        'knowledge_entity',
        sa.Column('id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('user_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('type', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('description', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=''),
        sa.Column('aliases', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_knowledge_entity_user_id'), 'knowledge_entity', ['user_id'], unique=False)
    op.create_index(op.f('ix_knowledge_entity_name'), 'knowledge_entity', ['name'], unique=False)

    op.create_table(
        'knowledge_note_entity',
        sa.Column('note_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('entity_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('user_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.PrimaryKeyConstraint('note_id', 'entity_id'),
    )
    op.create_index(op.f('ix_knowledge_note_entity_user_id'), 'knowledge_note_entity', ['user_id'], unique=False)

    op.create_table(
        'knowledge_relationship',
        sa.Column('id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('user_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('source_entity_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('target_entity_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('relation', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('source_note_id', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('evidence_snippet', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_knowledge_relationship_user_id'), 'knowledge_relationship', ['user_id'], unique=False)


def downgrade() -> None:
    """Back to schema v1. Events are derived and graph data is re-extractable."""
    op.drop_index(op.f('ix_knowledge_relationship_user_id'), table_name='knowledge_relationship')
    op.drop_table('knowledge_relationship')
    op.drop_index(op.f('ix_knowledge_note_entity_user_id'), table_name='knowledge_note_entity')
    op.drop_table('knowledge_note_entity')
    op.drop_index(op.f('ix_knowledge_entity_name'), table_name='knowledge_entity')
    op.drop_index(op.f('ix_knowledge_entity_user_id'), table_name='knowledge_entity')
    op.drop_table('knowledge_entity')
    op.drop_index(op.f('ix_knowledge_topic_event_topic_id'), table_name='knowledge_topic_event')
    op.drop_index(op.f('ix_knowledge_topic_event_user_id'), table_name='knowledge_topic_event')
    op.drop_table('knowledge_topic_event')

    with op.batch_alter_table('knowledge_topic_member', schema=None) as batch_op:
        batch_op.drop_column('evidence_rank')
        batch_op.drop_column('event_fingerprint')
        batch_op.drop_column('event_time')
        batch_op.drop_column('manual_state')
        batch_op.drop_column('source')

    with op.batch_alter_table('knowledge_topic', schema=None) as batch_op:
        batch_op.drop_column('last_ingested_at')
        batch_op.drop_column('archived_at')
        batch_op.drop_column('archived')
        batch_op.drop_column('pinned_at')
        batch_op.drop_column('pinned')
