from sitecraft.features.analysis.schemas.analysis import (
    AnalysisStartRequest,
    AnalysisStartResponse,
    AnalysisStatusResponse,
    AssetRefs,
    CategoryScores,
    FindingDraft,
    FindingListResponse,
    FindingResponse,
    JobSummary,
    OwnerContext,
)

__all__ = [
    "AnalysisStartRequest",
    "AnalysisStartResponse",
    "AnalysisStatusResponse",
    "AssetRefs",
    "CategoryScores",
    "FindingDraft",
    "FindingListResponse",
    "FindingResponse",
    "JobSummary",
    "OwnerContext",
]
