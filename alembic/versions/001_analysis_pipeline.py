"""analysis_pipeline

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


analysis_status = sa.Enum(
    'pending', 'processing', 'finalizing', 'completed', 'completed_with_errors', 'failed',
    name='analysis_status',
)
analysis_category = sa.Enum('accessibility', 'seo', 'performance', name='analysis_category')
worker_kind = sa.Enum(
    'aria', 'color_contrast', 'keyboard', 'media', 'forms', 'structure', 'tables',
    'technical_seo', 'on_page_seo', 'image_optimization', 'core_web_vitals',
    name='worker_kind',
)
job_status = sa.Enum('pending', 'running', 'completed', 'failed', name='job_status')
finding_severity = sa.Enum('critical', 'serious', 'moderate', 'minor', name='finding_severity')
asset_kind = sa.Enum(
    'html', 'screenshot_desktop', 'screenshot_mobile', 'metadata', 'robots_txt', 'sitemap_xml',
    name='asset_kind',
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    # Create analyses table
    op.create_table(
        'analyses',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('target_url', sa.String(2048), nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('workspace_id', sa.String(), nullable=True),
        sa.Column('status', analysis_status, nullable=False),
        sa.Column('failure_reason', sa.String(64), nullable=True),
        sa.Column('failure_detail', sa.Text(), nullable=True),
        sa.Column('final_url', sa.String(2048), nullable=True),
        sa.Column('http_status', sa.Integer(), nullable=True),
        sa.Column('score_overall', sa.Integer(), nullable=True),
        sa.Column('score_accessibility', sa.Integer(), nullable=True),
        sa.Column('score_seo', sa.Integer(), nullable=True),
        sa.Column('score_performance', sa.Integer(), nullable=True),
        sa.Column('missing_categories', sa.JSON(), nullable=True),
        sa.Column('partial_categories', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_analyses_id'), 'analyses', ['id'], unique=False)
    op.create_index(op.f('ix_analyses_user_id'), 'analyses', ['user_id'], unique=False)
    op.create_index(op.f('ix_analyses_workspace_id'), 'analyses', ['workspace_id'], unique=False)
    op.create_index(op.f('ix_analyses_status'), 'analyses', ['status'], unique=False)
    op.create_index(op.f('ix_analyses_expires_at'), 'analyses', ['expires_at'], unique=False)
    op.create_index('idx_analyses_status_created', 'analyses', ['status', 'created_at'], unique=False)

    # Create analysis_jobs table
    op.create_table(
        'analysis_jobs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('analysis_id', sa.String(), nullable=False),
        sa.Column('worker', worker_kind, nullable=False),
        sa.Column('category', analysis_category, nullable=False),
        sa.Column('status', job_status, nullable=False),
        sa.Column('failure_reason', sa.String(64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('deadline_at', sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['analysis_id'], ['analyses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('analysis_id', 'worker', name='uq_analysis_jobs_analysis_worker'),
    )
    op.create_index(op.f('ix_analysis_jobs_id'), 'analysis_jobs', ['id'], unique=False)
    op.create_index(op.f('ix_analysis_jobs_analysis_id'), 'analysis_jobs', ['analysis_id'], unique=False)
    op.create_index(op.f('ix_analysis_jobs_status'), 'analysis_jobs', ['status'], unique=False)
    op.create_index(op.f('ix_analysis_jobs_deadline_at'), 'analysis_jobs', ['deadline_at'], unique=False)
    op.create_index('idx_analysis_jobs_status_deadline', 'analysis_jobs', ['status', 'deadline_at'], unique=False)

    # Create findings table
    op.create_table(
        'findings',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('job_id', sa.String(), nullable=False),
        sa.Column('analysis_id', sa.String(), nullable=False),
        sa.Column('category', analysis_category, nullable=False),
        sa.Column('rule_key', sa.String(128), nullable=False),
        sa.Column('severity', finding_severity, nullable=False),
        sa.Column('location', sa.String(2048), nullable=True),
        sa.Column('metric_value', sa.Float(), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('remediation', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['job_id'], ['analysis_jobs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['analysis_id'], ['analyses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_findings_id'), 'findings', ['id'], unique=False)
    op.create_index(op.f('ix_findings_job_id'), 'findings', ['job_id'], unique=False)
    op.create_index(op.f('ix_findings_analysis_id'), 'findings', ['analysis_id'], unique=False)
    op.create_index(op.f('ix_findings_rule_key'), 'findings', ['rule_key'], unique=False)
    op.create_index('idx_findings_analysis_category', 'findings', ['analysis_id', 'category'], unique=False)
    op.create_index('idx_findings_severity', 'findings', ['severity'], unique=False)

    # Create analysis_assets table
    op.create_table(
        'analysis_assets',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('analysis_id', sa.String(), nullable=False),
        sa.Column('kind', asset_kind, nullable=False),
        sa.Column('locator', sa.String(1024), nullable=False),
        sa.Column('content_type', sa.String(255), nullable=True),
        sa.Column('size_bytes', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['analysis_id'], ['analyses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('analysis_id', 'kind', name='uq_analysis_assets_analysis_kind'),
    )
    op.create_index(op.f('ix_analysis_assets_id'), 'analysis_assets', ['id'], unique=False)
    op.create_index(op.f('ix_analysis_assets_analysis_id'), 'analysis_assets', ['analysis_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('analysis_assets')
    op.drop_table('findings')
    op.drop_table('analysis_jobs')
    op.drop_table('analyses')

    bind = op.get_bind()
    for enum_type in (asset_kind, finding_severity, job_status, worker_kind, analysis_category, analysis_status):
        enum_type.drop(bind, checkfirst=True)
