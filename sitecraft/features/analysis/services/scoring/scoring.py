"""
Aggregation and scoring.

Pure functions over a snapshot of an analysis's jobs and findings: no
database, no transport. The orchestrator takes the snapshot inside its
finalize transaction and writes the returned ScoreCard back in that same
transaction.

Scoring rules:
- each category starts at 100 and loses a fixed penalty per finding,
  weighted by severity, floored at 0;
- only findings of *completed* jobs count. A failed worker neither finds
  problems nor penalizes its category ("we couldn't check" is not "we found
  problems");
- a category with no completed job is excluded from the overall score rather
  than counted as zero;
- overall is the unweighted mean of the categories that were scored.
"""
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, NamedTuple, Optional

from sitecraft.features.analysis.models.analysis import AnalysisCategory, AnalysisStatus
from sitecraft.features.analysis.models.analysis_job import JobStatus
from sitecraft.features.analysis.models.finding import FindingSeverity

MAX_SCORE = 100

SEVERITY_PENALTIES = {
    FindingSeverity.critical: 15,
    FindingSeverity.serious: 10,
    FindingSeverity.moderate: 6,
    FindingSeverity.minor: 3,
}


class JobOutcome(NamedTuple):
    job_id: str
    category: AnalysisCategory
    status: JobStatus


class ScoredFinding(NamedTuple):
    job_id: str
    category: AnalysisCategory
    severity: FindingSeverity


@dataclass
class ScoreCard:
    overall: Optional[int]
    categories: Dict[AnalysisCategory, Optional[int]] = field(default_factory=dict)
    missing_categories: List[AnalysisCategory] = field(default_factory=list)
    partial_categories: List[AnalysisCategory] = field(default_factory=list)

    def as_columns(self) -> Dict[str, object]:
        """Column values for the Analysis row."""
        columns = {"score_overall": self.overall}
        for category in AnalysisCategory:
            columns[f"score_{category.value}"] = self.categories.get(category)
        columns["missing_categories"] = [c.value for c in self.missing_categories]
        columns["partial_categories"] = [c.value for c in self.partial_categories]
        return columns


def aggregate_status(statuses: Iterable[JobStatus]) -> AnalysisStatus:
    """
    Terminal analysis status from the multiset of terminal job statuses.

    all completed -> completed; some completed and some failed ->
    completed_with_errors; all failed (or nothing ran) -> failed.
    """
    statuses = list(statuses)
    if any(s not in (JobStatus.completed, JobStatus.failed) for s in statuses):
        raise ValueError("aggregate_status requires every job to be terminal")

    completed = sum(1 for s in statuses if s == JobStatus.completed)
    if statuses and completed == len(statuses):
        return AnalysisStatus.completed
    if completed:
        return AnalysisStatus.completed_with_errors
    return AnalysisStatus.failed


def score_category(severities: Iterable[FindingSeverity]) -> int:
    penalty = sum(SEVERITY_PENALTIES[s] for s in severities)
    return max(0, MAX_SCORE - penalty)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_scores(findings: Iterable[ScoredFinding], jobs: Iterable[JobOutcome]) -> ScoreCard:
    jobs = list(jobs)

    completed_jobs = {j.job_id for j in jobs if j.status == JobStatus.completed}
    dispatched = {j.category for j in jobs}
    scored = {j.category for j in jobs if j.status == JobStatus.completed}
    with_failures = {j.category for j in jobs if j.status == JobStatus.failed}

    severities: Dict[AnalysisCategory, List[FindingSeverity]] = {c: [] for c in scored}
    for finding in findings:
        if finding.job_id not in completed_jobs:
            continue
        if finding.category in severities:
            severities[finding.category].append(finding.severity)

    categories: Dict[AnalysisCategory, Optional[int]] = {}
    for category in AnalysisCategory:
        categories[category] = score_category(severities[category]) if category in scored else None

    scored_values = [v for v in categories.values() if v is not None]
    overall = _round_half_up(sum(scored_values) / len(scored_values)) if scored_values else None

    # Keep enum declaration order so the stored lists are stable
    missing = [c for c in AnalysisCategory if c in dispatched and c not in scored]
    partial = [c for c in AnalysisCategory if c in scored and c in with_failures]

    return ScoreCard(
        overall=overall,
        categories=categories,
        missing_categories=missing,
        partial_categories=partial,
    )
