"""
Analysis models package.
"""
from sitecraft.features.analysis.models.analysis import Analysis, AnalysisStatus, AnalysisCategory
from sitecraft.features.analysis.models.analysis_job import AnalysisJob, JobStatus, WorkerKind
from sitecraft.features.analysis.models.finding import Finding, FindingSeverity
from sitecraft.features.analysis.models.asset import Asset, AssetKind

__all__ = [
    "Analysis",
    "AnalysisStatus",
    "AnalysisCategory",
    "AnalysisJob",
    "JobStatus",
    "WorkerKind",
    "Finding",
    "FindingSeverity",
    "Asset",
    "AssetKind",
]
