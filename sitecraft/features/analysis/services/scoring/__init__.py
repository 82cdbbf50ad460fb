from sitecraft.features.analysis.services.scoring.scoring import (
    SEVERITY_PENALTIES,
    JobOutcome,
    ScoreCard,
    ScoredFinding,
    aggregate_status,
    compute_scores,
    score_category,
)

__all__ = [
    "SEVERITY_PENALTIES",
    "JobOutcome",
    "ScoreCard",
    "ScoredFinding",
    "aggregate_status",
    "compute_scores",
    "score_category",
]
