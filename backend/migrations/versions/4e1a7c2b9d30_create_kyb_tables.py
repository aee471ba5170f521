"""Create kyb_jobs and kyb_log_entries tables

Revision ID: 4e1a7c2b9d30
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4e1a7c2b9d30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

job_status = sa.Enum(
    'PENDING', 'PROCESSING', 'ACTION_REQUIRED', 'COMPLETED', 'FAILED',
    name='jobstatus',
)
pipeline_stage = sa.Enum(
    'IDENTITY_RESOLUTION', 'REGISTRY_VERIFICATION', 'WEBSITE_COLLECTION',
    'CROSS_VALIDATION', 'COMPILATION', 'DONE',
    name='pipelinestage',
)


def upgrade() -> None:
    op.create_table(
        'kyb_jobs',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('business_name', sa.String(), nullable=False),
        sa.Column('active_name', sa.String(), nullable=False),
        sa.Column('status', job_status, nullable=False),
        sa.Column('current_stage', pipeline_stage, nullable=False),
        sa.Column('candidate_crn', sa.String(16), nullable=True),
        sa.Column('candidate_source', sa.String(32), nullable=True),
        sa.Column('website_hint', sa.String(), nullable=True),
        sa.Column('website_source', sa.String(32), nullable=True),
        sa.Column('required_fields', sa.JSON(), nullable=True),
        sa.Column('awaiting_confirmation', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_kyb_jobs_created_at'), 'kyb_jobs', ['created_at'], unique=False)

    op.create_table(
        'kyb_log_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.String(32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('step', sa.String(), nullable=False),
        sa.Column('kind', sa.String(32), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['kyb_jobs.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_kyb_log_entries_job_id'), 'kyb_log_entries', ['job_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_kyb_log_entries_job_id'), table_name='kyb_log_entries')
    op.drop_table('kyb_log_entries')
    op.drop_index(op.f('ix_kyb_jobs_created_at'), table_name='kyb_jobs')
    op.drop_table('kyb_jobs')
    job_status.drop(op.get_bind(), checkfirst=True)
    pipeline_stage.drop(op.get_bind(), checkfirst=True)
