"""add automation_entity and history_entry tables

Revision ID: a1_automation_core
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = 'a1_automation_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ── Stored entities (jobs, workflows, rules, profiles, ...) ──
    op.create_table(
        'automation_entity',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('collection', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(100), nullable=False),
        sa.Column('payload_json', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('collection', 'entity_id', name='uq_automation_entity_collection_entity'),
    )
    op.create_index('ix_automation_entity_collection', 'automation_entity', ['collection'])

    # ── Append-only history ──
    op.create_table(
        'history_entry',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('stream', sa.String(50), nullable=False),
        sa.Column('ref_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(30), nullable=True),
        sa.Column('entry_json', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_history_entry_stream', 'history_entry', ['stream'])
    op.create_index('ix_history_entry_ref_id', 'history_entry', ['ref_id'])
    op.create_index('ix_history_entry_created_at', 'history_entry', ['created_at'])


def downgrade():
    op.drop_index('ix_history_entry_created_at', table_name='history_entry')
    op.drop_index('ix_history_entry_ref_id', table_name='history_entry')
    op.drop_index('ix_history_entry_stream', table_name='history_entry')
    op.drop_table('history_entry')

    op.drop_index('ix_automation_entity_collection', table_name='automation_entity')
    op.drop_table('automation_entity')
