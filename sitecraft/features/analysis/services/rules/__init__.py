from sitecraft.features.analysis.services.rules.base import PageSnapshot, RuleWorker
from sitecraft.features.analysis.services.rules.harness import run_worker
from sitecraft.features.analysis.services.rules.registry import WorkerRegistry, default_registry

__all__ = [
    "PageSnapshot",
    "RuleWorker",
    "WorkerRegistry",
    "default_registry",
    "run_worker",
]
