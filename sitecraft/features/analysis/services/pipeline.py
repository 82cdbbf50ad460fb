"""
Process-level wiring of the analysis pipeline.

Every process (API server, Celery worker) builds one ``Pipeline`` at startup
and closes it at shutdown; nothing in the pipeline reaches for a global
connection on its own.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from celery import Celery
from sqlalchemy.orm import sessionmaker

from sitecraft.features.analysis.services.fetching import PageFetcher
from sitecraft.features.analysis.services.orchestration import AnalysisOrchestrator
from sitecraft.features.analysis.services.rules import WorkerRegistry, default_registry
from sitecraft.platform.config import settings
from sitecraft.platform.db.session import create_sync_session_factory
from sitecraft.platform.dispatch import TaskDispatcher
from sitecraft.platform.storage.asset_store import AssetStore, LocalAssetStore

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    session_factory: sessionmaker
    dispatcher: TaskDispatcher
    registry: WorkerRegistry
    asset_store: AssetStore
    orchestrator: AnalysisOrchestrator
    fetcher: PageFetcher

    def close(self) -> None:
        self.fetcher.close()
        self.dispatcher.close()
        self.session_factory.kw["bind"].dispose()
        logger.info("Analysis pipeline closed")


def build_pipeline(
    celery: Optional[Celery] = None,
    session_factory: Optional[sessionmaker] = None,
    asset_store: Optional[AssetStore] = None,
) -> Pipeline:
    if celery is None:
        from sitecraft.platform.celery_app import celery_app as celery

    session_factory = session_factory or create_sync_session_factory()
    asset_store = asset_store or LocalAssetStore(settings.ASSET_STORAGE_PATH)
    registry = default_registry().enabled(settings.enabled_workers)
    dispatcher = TaskDispatcher(celery)

    orchestrator = AnalysisOrchestrator(
        session_factory,
        dispatcher,
        registry,
        job_timeout=timedelta(minutes=settings.ANALYSIS_JOB_TIMEOUT_MINUTES),
        fetch_timeout=timedelta(minutes=settings.ANALYSIS_FETCH_TIMEOUT_MINUTES),
        anonymous_ttl=timedelta(hours=settings.ANONYMOUS_ANALYSIS_TTL_HOURS),
    )
    fetcher = PageFetcher(asset_store, session_factory)

    logger.info(f"Analysis pipeline ready with workers: {[k.value for k in registry.kinds()]}")
    return Pipeline(
        session_factory=session_factory,
        dispatcher=dispatcher,
        registry=registry,
        asset_store=asset_store,
        orchestrator=orchestrator,
        fetcher=fetcher,
    )
