"""
Analysis pipeline error taxonomy.

Request-time errors are raised synchronously to the caller of
``start_analysis``. Fetch-time and worker-time errors never cross a component
boundary: they are caught where they happen and recorded as a status plus a
``reason`` on the Analysis or AnalysisJob row.
"""
from typing import Optional


class PipelineError(Exception):
    """Base class; ``reason`` is the stable string persisted as failure reason."""

    def __init__(self, message: str = "", reason: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        self.reason = reason or self.__class__.__name__


# Request-time

class InvalidTarget(PipelineError):
    pass


class UpstreamUnavailable(PipelineError):
    pass


# Fetch-time (terminal for the whole analysis)

class FetchError(PipelineError):
    pass


class NetworkError(FetchError):
    pass


class NavigationTimeout(FetchError):
    pass


class NonSuccessStatus(FetchError):
    def __init__(self, status_code: int, url: str = ""):
        super().__init__(f"{url} responded with HTTP {status_code}")
        self.status_code = status_code


# Worker-time (local to one job)

class WorkerError(PipelineError):
    pass


class RuleEvaluationError(WorkerError):
    pass


class WorkerCrash(WorkerError):
    pass


class WorkerTimeout(WorkerError):
    def __init__(self, message: str = ""):
        # Persisted as plain "Timeout" so sweep and worker reports agree
        super().__init__(message or "Job exceeded its deadline", reason="Timeout")


class AssetUnavailable(WorkerError):
    pass
