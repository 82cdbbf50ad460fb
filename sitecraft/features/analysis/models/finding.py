from sqlalchemy import Column, String, Float, Text, ForeignKey, Index, Enum, JSON
from sqlalchemy.orm import relationship
import enum

from sitecraft.features.analysis.models.analysis import AnalysisCategory
from sitecraft.platform.db.base import BaseModel


class FindingSeverity(enum.Enum):
    """Severity levels, most to least severe"""
    critical = "critical"
    serious = "serious"
    moderate = "moderate"
    minor = "minor"


class Finding(BaseModel):
    """
    One detected rule violation.

    Written once by the worker's completion report and never updated;
    removed only by cascade when its analysis is deleted.
    """
    __tablename__ = "findings"

    job_id = Column(String, ForeignKey("analysis_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    analysis_id = Column(String, ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False, index=True)

    category = Column(Enum(AnalysisCategory, name="analysis_category"), nullable=False)

    # Stable key into the external rule catalog
    rule_key = Column(String(128), nullable=False, index=True)
    severity = Column(Enum(FindingSeverity, name="finding_severity"), nullable=False)

    # CSS selector, DOM path or resource URL
    location = Column(String(2048), nullable=True)
    metric_value = Column(Float, nullable=True)
    message = Column(Text, nullable=True)
    remediation = Column(JSON, nullable=True)

    job = relationship("AnalysisJob", back_populates="findings", lazy="select")

    __table_args__ = (
        Index('idx_findings_analysis_category', 'analysis_id', 'category'),
        Index('idx_findings_severity', 'severity'),
    )
