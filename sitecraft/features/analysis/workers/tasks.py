"""
Celery tasks for the analysis pipeline.

Tasks are thin: they resolve the process's Pipeline, call into the fetcher,
the worker harness or the orchestrator, and return a small summary. Delivery
is at-least-once; the orchestrator's conditional transitions make every
task safe to run twice.
"""
import logging
from typing import Any, Dict, Optional

from celery import shared_task
from celery.signals import worker_process_init, worker_process_shutdown

from sitecraft.features.analysis.exceptions import FetchError
from sitecraft.features.analysis.models.analysis import Analysis, AnalysisStatus
from sitecraft.features.analysis.services.pipeline import Pipeline, build_pipeline
from sitecraft.features.analysis.services.rules import run_worker
from sitecraft.platform.celery_app import EVALUATE_TASK, FETCH_TASK, SWEEP_TASK
from sitecraft.platform.storage.asset_store import AssetExists

logger = logging.getLogger(__name__)

_pipeline: Optional[Pipeline] = None


def current_pipeline() -> Pipeline:
    """The pipeline of this worker process, built on first use."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


@worker_process_init.connect
def init_worker_pipeline(**kwargs):
    # Build after fork so no connection is shared with the parent
    current_pipeline()


@worker_process_shutdown.connect
def close_worker_pipeline(**kwargs):
    global _pipeline
    if _pipeline is not None:
        _pipeline.close()
        _pipeline = None


@shared_task(bind=True, name=FETCH_TASK)
def fetch_page(self, analysis_id: str) -> Dict[str, Any]:
    """Capture the target page and hand the snapshot to the orchestrator."""
    pipeline = current_pipeline()

    with pipeline.session_factory() as session:
        analysis = session.get(Analysis, analysis_id)
        if analysis is None:
            logger.warning(f"[{analysis_id}] Fetch requested for unknown analysis")
            return {"analysis_id": analysis_id, "status": "missing"}
        if analysis.status != AnalysisStatus.pending:
            logger.info(f"[{analysis_id}] Analysis is {analysis.status.value}, fetch skipped")
            return {"analysis_id": analysis_id, "status": "skipped"}
        target_url = analysis.target_url

    try:
        asset_refs = pipeline.fetcher.fetch(analysis_id, target_url)
    except AssetExists:
        # A concurrent delivery is still storing the snapshot and reports it itself
        return {"analysis_id": analysis_id, "status": "duplicate"}
    except FetchError as e:
        pipeline.orchestrator.on_fetch_failed(analysis_id, e.reason, str(e))
        return {"analysis_id": analysis_id, "status": "failed", "reason": e.reason}

    job_ids = pipeline.orchestrator.on_fetch_complete(analysis_id, asset_refs)
    return {"analysis_id": analysis_id, "status": "fetched", "jobs": len(job_ids)}


@shared_task(bind=True, name=EVALUATE_TASK)
def evaluate_rules(self, worker: str, analysis_id: str, job_id: str, asset_refs: Dict[str, Any]) -> Dict[str, Any]:
    """Run one rule-category worker over a stored snapshot."""
    pipeline = current_pipeline()
    outcome = run_worker(
        pipeline.orchestrator,
        pipeline.registry,
        pipeline.asset_store,
        worker,
        analysis_id,
        job_id,
        asset_refs,
    )
    return {
        "analysis_id": analysis_id,
        "job_id": job_id,
        "worker": worker,
        "status": outcome.value if outcome else "skipped",
    }


@shared_task(bind=True, name=SWEEP_TASK)
def sweep_stalled_jobs(self) -> Dict[str, Any]:
    """Periodic (Celery Beat) reclamation of timed out jobs and fetches."""
    return current_pipeline().orchestrator.sweep_timeouts().as_dict()
