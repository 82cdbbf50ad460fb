from sitecraft.features.analysis.services.orchestration.orchestrator import (
    AnalysisOrchestrator,
    SweepReport,
)

__all__ = ["AnalysisOrchestrator", "SweepReport"]
