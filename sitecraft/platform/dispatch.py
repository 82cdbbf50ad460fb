"""
Task dispatch client.

The orchestrator never touches the Celery app directly: it is handed a
``TaskDispatcher`` at construction time. The dispatcher sends tasks by name
(so no task module has to be imported to enqueue work), translates broker
connectivity errors into ``UpstreamUnavailable`` and owns the lifecycle of the
producer connection pool.
"""

from typing import Any, Dict

from celery import Celery
from kombu.exceptions import OperationalError

from sitecraft.features.analysis.exceptions import UpstreamUnavailable
from sitecraft.features.analysis.models.analysis_job import WorkerKind
from sitecraft.platform.celery_app import EVALUATE_TASK, FETCH_TASK, rules_queue
from sitecraft.platform.logger import get_logger

logger = get_logger(__name__)


class TaskDispatcher:
    def __init__(self, celery_app: Celery):
        self._app = celery_app
        self._closed = False

    def send_fetch(self, analysis_id: str) -> str:
        return self._send(FETCH_TASK, {"analysis_id": analysis_id})

    def send_worker(
        self,
        kind: WorkerKind,
        analysis_id: str,
        job_id: str,
        asset_refs: Dict[str, Any],
    ) -> str:
        return self._send(
            EVALUATE_TASK,
            {
                "worker": kind.value,
                "analysis_id": analysis_id,
                "job_id": job_id,
                "asset_refs": asset_refs,
            },
            queue=rules_queue(kind),
        )

    def _send(self, task_name: str, kwargs: Dict[str, Any], queue: str = None) -> str:
        if self._closed:
            raise UpstreamUnavailable("Task dispatcher has been closed")
        options = {"queue": queue} if queue else {}
        try:
            result = self._app.send_task(task_name, kwargs=kwargs, **options)
        except OperationalError as e:
            logger.error(f"Broker unreachable while sending {task_name}: {e}")
            raise UpstreamUnavailable(f"Task transport unavailable: {e}") from e
        return result.id

    def close(self) -> None:
        """Release pooled broker connections. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._app.close()
        logger.info("Task dispatcher closed")
