from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index, UniqueConstraint, Enum
from sqlalchemy.orm import relationship
import enum

from sitecraft.features.analysis.models.analysis import AnalysisCategory
from sitecraft.platform.db.base import BaseModel


class WorkerKind(enum.Enum):
    """Closed set of rule-category workers."""
    aria = "aria"
    color_contrast = "color_contrast"
    keyboard = "keyboard"
    media = "media"
    forms = "forms"
    structure = "structure"
    tables = "tables"
    technical_seo = "technical_seo"
    on_page_seo = "on_page_seo"
    image_optimization = "image_optimization"
    core_web_vitals = "core_web_vitals"


WORKER_CATEGORIES = {
    WorkerKind.aria: AnalysisCategory.accessibility,
    WorkerKind.color_contrast: AnalysisCategory.accessibility,
    WorkerKind.keyboard: AnalysisCategory.accessibility,
    WorkerKind.media: AnalysisCategory.accessibility,
    WorkerKind.forms: AnalysisCategory.accessibility,
    WorkerKind.structure: AnalysisCategory.accessibility,
    WorkerKind.tables: AnalysisCategory.accessibility,
    WorkerKind.technical_seo: AnalysisCategory.seo,
    WorkerKind.on_page_seo: AnalysisCategory.seo,
    WorkerKind.image_optimization: AnalysisCategory.performance,
    WorkerKind.core_web_vitals: AnalysisCategory.performance,
}


class JobStatus(enum.Enum):
    """AnalysisJob state machine: pending -> running -> {completed, failed}"""
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


ACTIVE_JOB_STATUSES = (JobStatus.pending, JobStatus.running)


class AnalysisJob(BaseModel):
    """
    One worker's unit of work within an Analysis.

    A worker only ever writes its own row; the orchestrator writes it too when
    the timeout sweep force-fails it.
    """
    __tablename__ = "analysis_jobs"

    analysis_id = Column(String, ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False, index=True)

    worker = Column(Enum(WorkerKind, name="worker_kind"), nullable=False)
    category = Column(Enum(AnalysisCategory, name="analysis_category"), nullable=False)

    status = Column(Enum(JobStatus, name="job_status"), default=JobStatus.pending, nullable=False, index=True)

    # Error tracking
    failure_reason = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    deadline_at = Column(DateTime, nullable=False, index=True)

    analysis = relationship("Analysis", back_populates="jobs", lazy="select")
    findings = relationship(
        "Finding",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    __table_args__ = (
        UniqueConstraint('analysis_id', 'worker', name='uq_analysis_jobs_analysis_worker'),
        Index('idx_analysis_jobs_status_deadline', 'status', 'deadline_at'),
    )
