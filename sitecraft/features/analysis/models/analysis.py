from sqlalchemy import Column, String, Integer, DateTime, Text, Index, Enum, JSON
from sqlalchemy.orm import relationship
import enum

from sitecraft.platform.db.base import BaseModel


class AnalysisStatus(enum.Enum):
    """
    Analysis state machine.

    pending -> processing -> {completed, completed_with_errors, failed}
    pending -> failed (fetch failure)

    ``finalizing`` is the compare-and-set marker taken while scores are
    computed; it is committed together with the terminal status, so readers
    never observe it.
    """
    pending = "pending"
    processing = "processing"
    finalizing = "finalizing"
    completed = "completed"
    completed_with_errors = "completed_with_errors"
    failed = "failed"


class AnalysisCategory(enum.Enum):
    """Score categories; every worker contributes to exactly one."""
    accessibility = "accessibility"
    seo = "seo"
    performance = "performance"


class Analysis(BaseModel):
    """
    One audit run for one URL.

    Only the orchestrator writes status, scores and coverage fields.
    """
    __tablename__ = "analyses"

    target_url = Column(String(2048), nullable=False)

    # Owner context (both null for anonymous runs)
    user_id = Column(String, nullable=True, index=True)
    workspace_id = Column(String, nullable=True, index=True)

    status = Column(
        Enum(AnalysisStatus, name="analysis_status"),
        default=AnalysisStatus.pending,
        nullable=False,
        index=True,
    )
    failure_reason = Column(String(64), nullable=True)
    failure_detail = Column(Text, nullable=True)

    # Fetch metadata
    final_url = Column(String(2048), nullable=True)
    http_status = Column(Integer, nullable=True)

    # Composite scores (0-100, null when the category could not be checked)
    score_overall = Column(Integer, nullable=True)
    score_accessibility = Column(Integer, nullable=True)
    score_seo = Column(Integer, nullable=True)
    score_performance = Column(Integer, nullable=True)

    # Categories with no completed worker / with at least one failed worker
    missing_categories = Column(JSON, nullable=True)
    partial_categories = Column(JSON, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True, index=True)

    jobs = relationship(
        "AnalysisJob",
        back_populates="analysis",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )
    assets = relationship(
        "Asset",
        back_populates="analysis",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    __table_args__ = (
        Index('idx_analyses_status_created', 'status', 'created_at'),
    )
