"""
Analysis Schemas

Transport models for the pipeline (task payloads, worker output) and the
request/response models of the analysis API endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from sitecraft.features.analysis.models.analysis import AnalysisCategory, AnalysisStatus
from sitecraft.features.analysis.models.analysis_job import JobStatus, WorkerKind
from sitecraft.features.analysis.models.asset import AssetKind
from sitecraft.features.analysis.models.finding import FindingSeverity


# ============================================================================
# Pipeline payloads
# ============================================================================

class OwnerContext(BaseModel):
    """Who requested the analysis; both ids are None for anonymous runs."""
    user_id: Optional[str] = None
    workspace_id: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return not self.user_id and not self.workspace_id


class AssetRefs(BaseModel):
    """
    References to the durable snapshot of one fetch.

    Serialized into every worker task; workers resolve locators through the
    asset store and never go back to the network.
    """
    analysis_id: str
    locators: Dict[AssetKind, str]
    requested_url: str
    final_url: str
    status_code: int

    def locator(self, kind: AssetKind) -> Optional[str]:
        return self.locators.get(kind)


class FindingDraft(BaseModel):
    """A finding as emitted by a worker, before it is persisted."""
    rule_key: str
    severity: FindingSeverity
    location: Optional[str] = None
    metric_value: Optional[float] = None
    message: Optional[str] = None
    remediation: Optional[Dict[str, Any]] = None


# ============================================================================
# API schemas
# ============================================================================

class AnalysisStartRequest(BaseModel):
    """Request to start an analysis. ``url`` may omit its scheme."""
    url: str = Field(..., min_length=1, max_length=2048)
    user_id: Optional[str] = None
    workspace_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "url": "example.com",
                "workspace_id": None
            }
        }


class AnalysisStartResponse(BaseModel):
    analysis_id: str
    status: AnalysisStatus


class CategoryScores(BaseModel):
    overall: Optional[int] = None
    accessibility: Optional[int] = None
    seo: Optional[int] = None
    performance: Optional[int] = None


class JobSummary(BaseModel):
    job_id: str
    worker: WorkerKind
    category: AnalysisCategory
    status: JobStatus
    failure_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class AnalysisStatusResponse(BaseModel):
    analysis_id: str
    target_url: str
    final_url: Optional[str] = None
    status: AnalysisStatus
    failure_reason: Optional[str] = None
    scores: CategoryScores
    missing_categories: List[AnalysisCategory] = []
    partial_categories: List[AnalysisCategory] = []
    jobs: List[JobSummary] = []
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class FindingResponse(BaseModel):
    finding_id: str
    worker: WorkerKind
    category: AnalysisCategory
    rule_key: str
    severity: FindingSeverity
    location: Optional[str] = None
    metric_value: Optional[float] = None
    message: Optional[str] = None
    remediation: Optional[Dict[str, Any]] = None


class FindingListResponse(BaseModel):
    analysis_id: str
    total: int
    counts_by_severity: Dict[FindingSeverity, int]
    findings: List[FindingResponse]
