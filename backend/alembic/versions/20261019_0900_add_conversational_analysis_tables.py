"""add_conversational_analysis_tables

Revision ID: 7d3e9a1c4b20
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7d3e9a1c4b20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create conversational analysis, message and artifact tables."""
    op.create_table(
        'conversational_analyses',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('epic_content', sa.Text(), nullable=False, server_default=''),
        sa.Column('user_id', sa.String(255), nullable=False),

        # Workflow state
        sa.Column('status', sa.String(40), nullable=False, server_default='IN_PROGRESS'),
        sa.Column('current_phase', sa.String(40), nullable=False, server_default='ANALYSIS'),
        sa.Column('completeness', sa.Integer(), nullable=False, server_default='0'),

        # Lifecycle audit
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('reopened_at', sa.DateTime(), nullable=True),
        sa.Column('reopen_reason', sa.Text(), nullable=True),

        # Timestamps
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),

        sa.CheckConstraint(
            'completeness >= 0 AND completeness <= 100',
            name='ck_conversational_analyses_completeness_range',
        ),
    )
    op.create_index('ix_conversational_analyses_user_id', 'conversational_analyses', ['user_id'])
    op.create_index('ix_conversational_analyses_status', 'conversational_analyses', ['status'])
    op.create_index('ix_conversational_analyses_user_created', 'conversational_analyses',
                    ['user_id', 'created_at'])

    op.create_table(
        'conversational_messages',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('analysis_id', sa.String(36),
                  sa.ForeignKey('conversational_analyses.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('role', sa.String(40), nullable=False),
        sa.Column('message_type', sa.String(40), nullable=False),
        sa.Column('category', sa.String(40), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_conversational_messages_analysis_created', 'conversational_messages',
                    ['analysis_id', 'created_at'])
    op.create_index('ix_conversational_messages_analysis_role', 'conversational_messages',
                    ['analysis_id', 'role'])

    op.create_table(
        'requirements_artifacts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('analysis_id', sa.String(36),
                  sa.ForeignKey('conversational_analyses.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('refined_requirements', sa.Text(), nullable=False, server_default=''),
        sa.Column('completeness_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint(
            'completeness_score >= 0 AND completeness_score <= 100',
            name='ck_requirements_artifacts_score_range',
        ),
    )


def downgrade() -> None:
    """Drop conversational tables."""
    op.drop_table('requirements_artifacts')
    op.drop_index('ix_conversational_messages_analysis_role', table_name='conversational_messages')
    op.drop_index('ix_conversational_messages_analysis_created', table_name='conversational_messages')
    op.drop_table('conversational_messages')
    op.drop_index('ix_conversational_analyses_user_created', table_name='conversational_analyses')
    op.drop_index('ix_conversational_analyses_status', table_name='conversational_analyses')
    op.drop_index('ix_conversational_analyses_user_id', table_name='conversational_analyses')
    op.drop_table('conversational_analyses')
