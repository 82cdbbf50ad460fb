import logging
from typing import Any, Dict, Optional, Union

from sitecraft.features.analysis.exceptions import WorkerCrash, WorkerError
from sitecraft.features.analysis.models.analysis_job import JobStatus, WorkerKind
from sitecraft.features.analysis.schemas.analysis import AssetRefs
from sitecraft.features.analysis.services.rules.base import PageSnapshot
from sitecraft.platform.storage.asset_store import AssetStore

logger = logging.getLogger(__name__)


def run_worker(
    orchestrator,
    registry,
    asset_store: AssetStore,
    kind: Union[WorkerKind, str],
    analysis_id: str,
    job_id: str,
    asset_refs: Union[AssetRefs, Dict[str, Any]],
) -> Optional[JobStatus]:
    """
    Evaluate one job and report exactly one outcome to the orchestrator.

    Returns the status reported, or None when the job was already finished
    (redelivered task, or failed by the timeout sweep) and nothing ran.
    Errors never propagate: a WorkerError keeps its own reason, anything
    else is reported as WorkerCrash.
    """
    if not orchestrator.on_job_started(job_id):
        return None

    try:
        kind = WorkerKind(kind)
        worker = registry.get(kind)
        if worker is None:
            raise WorkerCrash(f"No worker registered for {kind.value}")

        if not isinstance(asset_refs, AssetRefs):
            asset_refs = AssetRefs.model_validate(asset_refs)

        snapshot = PageSnapshot.load(asset_store, asset_refs)
        findings = worker.run(snapshot)
    except WorkerError as e:
        logger.warning(f"[{analysis_id}] {kind} job {job_id} failed: {e.reason}: {e}")
        orchestrator.on_job_failed(job_id, e.reason, str(e))
        return JobStatus.failed
    except Exception as e:
        logger.exception(f"[{analysis_id}] {kind} job {job_id} crashed")
        orchestrator.on_job_failed(job_id, WorkerCrash.__name__, f"{type(e).__name__}: {e}")
        return JobStatus.failed

    orchestrator.on_job_complete(job_id, findings)
    return JobStatus.completed
