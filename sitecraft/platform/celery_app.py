from celery import Celery
from kombu import Queue

from sitecraft.features.analysis.models.analysis_job import WorkerKind
from sitecraft.platform.config import settings

FETCH_TASK = "sitecraft.features.analysis.workers.tasks.fetch_page"
EVALUATE_TASK = "sitecraft.features.analysis.workers.tasks.evaluate_rules"
SWEEP_TASK = "sitecraft.features.analysis.workers.tasks.sweep_stalled_jobs"

FETCH_QUEUE = "analysis.fetch"
MAINTENANCE_QUEUE = "analysis.maintenance"


def rules_queue(kind: WorkerKind) -> str:
    """Queue carrying evaluation tasks for a single worker kind."""
    return f"analysis.rules.{kind.value}"


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - analysis.fetch: Headless browser fetch of the target page
    - analysis.rules.<worker>: One queue per rule-category worker, so each
      category can be scaled (or starved) independently
    - analysis.maintenance: Timeout sweep driven by Celery Beat

    Delivery is at-least-once (late acks, requeue on worker loss); the
    orchestrator's conditional state transitions absorb duplicate deliveries.
    """
    celery_app = Celery(
        "sitecraft",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_track_started=settings.CELERY_TASK_TRACK_STARTED,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,

        # Results expire after 1 hour
        result_expires=3600,

        task_routes={
            FETCH_TASK: {"queue": FETCH_QUEUE},
            SWEEP_TASK: {"queue": MAINTENANCE_QUEUE},
        },

        task_queues=(
            Queue("default"),
            Queue(FETCH_QUEUE),
            Queue(MAINTENANCE_QUEUE),
            *(Queue(rules_queue(kind)) for kind in WorkerKind),
        ),

        task_default_queue="default",

        # Fair distribution
        worker_prefetch_multiplier=1,

        # Acknowledge after task completes, requeue if worker dies
        task_acks_late=True,
        task_reject_on_worker_lost=True,

        beat_schedule={
            "sweep-stalled-analysis-jobs": {
                "task": SWEEP_TASK,
                "schedule": settings.ANALYSIS_SWEEP_INTERVAL_SECONDS,
            },
        },
    )

    celery_app.autodiscover_tasks(["sitecraft.features.analysis.workers"])

    return celery_app


celery_app = create_celery_app()
