from typing import Dict, Iterable, List, Optional, Union

from sitecraft.features.analysis.models.analysis_job import WorkerKind
from sitecraft.features.analysis.services.rules.accessibility import (
    AriaWorker,
    ColorContrastWorker,
    FormsWorker,
    KeyboardWorker,
    MediaWorker,
    StructureWorker,
    TablesWorker,
)
from sitecraft.features.analysis.services.rules.base import RuleWorker
from sitecraft.features.analysis.services.rules.performance import CoreWebVitalsWorker, ImageOptimizationWorker
from sitecraft.features.analysis.services.rules.seo import OnPageSeoWorker, TechnicalSeoWorker


class WorkerRegistry:
    """
    Maps each WorkerKind to the worker that evaluates it.

    The orchestrator fans out one job per registered kind; the task layer
    resolves the worker for an incoming job through the same registry.
    """

    def __init__(self, workers: Iterable[RuleWorker] = ()):
        self._workers: Dict[WorkerKind, RuleWorker] = {}
        for worker in workers:
            self.register(worker)

    def register(self, worker: RuleWorker) -> None:
        if worker.kind in self._workers:
            raise ValueError(f"A worker is already registered for {worker.kind.value}")
        self._workers[worker.kind] = worker

    def get(self, kind: WorkerKind) -> Optional[RuleWorker]:
        return self._workers.get(kind)

    def kinds(self) -> List[WorkerKind]:
        # Declaration order of WorkerKind, independent of registration order
        return [kind for kind in WorkerKind if kind in self._workers]

    def enabled(self, kinds: Iterable[Union[WorkerKind, str]]) -> "WorkerRegistry":
        """
        Registry restricted to ``kinds``; an empty selection keeps every worker.

        Raises ValueError for names that are not worker kinds.
        """
        selected = {WorkerKind(k) if isinstance(k, str) else k for k in kinds}
        if not selected:
            return WorkerRegistry(self._workers.values())
        return WorkerRegistry(w for kind, w in self._workers.items() if kind in selected)

    def __contains__(self, kind: WorkerKind) -> bool:
        return kind in self._workers

    def __len__(self) -> int:
        return len(self._workers)


def default_registry() -> WorkerRegistry:
    return WorkerRegistry([
        AriaWorker(),
        ColorContrastWorker(),
        KeyboardWorker(),
        MediaWorker(),
        FormsWorker(),
        StructureWorker(),
        TablesWorker(),
        TechnicalSeoWorker(),
        OnPageSeoWorker(),
        ImageOptimizationWorker(),
        CoreWebVitalsWorker(),
    ])
