"""
Test configuration and fixtures for the SiteCraft analysis pipeline.

The orchestrator runs against a real SQLite database shared through a
StaticPool, with a recording dispatcher in place of Celery and an in-memory
asset store, so every state transition goes through real conditional UPDATEs.
"""

import os
import tempfile
from datetime import datetime, timedelta
from typing import Generator
from unittest.mock import MagicMock, patch

from dotenv import load_dotenv

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

load_dotenv()

test_db_url = os.getenv("TEST_DATABASE_URL")
if test_db_url:
    if "postgresql://" in test_db_url and "asyncpg" not in test_db_url:
        test_db_url = test_db_url.replace("postgresql://", "postgresql+asyncpg://")
    os.environ["DATABASE_URL"] = test_db_url
else:
    test_db_path = tempfile.mktemp(suffix=".db")
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"

os.environ.setdefault("ASSET_STORAGE_PATH", tempfile.mkdtemp(prefix="sitecraft-assets-"))


from sitecraft.features.analysis import models  # noqa: E402,F401
from sitecraft.features.analysis.exceptions import UpstreamUnavailable  # noqa: E402
from sitecraft.features.analysis.models.analysis_job import WorkerKind  # noqa: E402
from sitecraft.features.analysis.models.asset import AssetKind  # noqa: E402
from sitecraft.features.analysis.schemas.analysis import AssetRefs  # noqa: E402
from sitecraft.features.analysis.services.orchestration import AnalysisOrchestrator  # noqa: E402
from sitecraft.features.analysis.services.rules import WorkerRegistry, default_registry  # noqa: E402
from sitecraft.main import app  # noqa: E402
from sitecraft.platform.db.base import Base  # noqa: E402
from sitecraft.platform.db.session import create_sync_session_factory  # noqa: E402
from sitecraft.platform.storage.asset_store import MemoryAssetStore  # noqa: E402

# Three accessibility, two SEO and one performance worker
SIX_WORKERS = (
    WorkerKind.aria,
    WorkerKind.color_contrast,
    WorkerKind.keyboard,
    WorkerKind.technical_seo,
    WorkerKind.on_page_seo,
    WorkerKind.core_web_vitals,
)

START = datetime(2026, 1, 15, 12, 0, 0)


class FakeClock:
    """Manually advanced replacement for ``datetime.utcnow``."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingDispatcher:
    """Stands in for TaskDispatcher; records what would have been enqueued."""

    def __init__(self):
        self.fetches = []
        self.workers = []
        self.fetch_unavailable = False
        self.unavailable_kinds = set()
        self.closed = False

    def send_fetch(self, analysis_id: str) -> str:
        if self.fetch_unavailable:
            raise UpstreamUnavailable("broker down")
        self.fetches.append(analysis_id)
        return f"fetch-{analysis_id}"

    def send_worker(self, kind, analysis_id, job_id, asset_refs) -> str:
        if kind in self.unavailable_kinds:
            raise UpstreamUnavailable("broker down")
        self.workers.append((kind, analysis_id, job_id, asset_refs))
        return f"task-{job_id}"

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def asset_store() -> MemoryAssetStore:
    return MemoryAssetStore()


@pytest.fixture
def registry() -> WorkerRegistry:
    return default_registry().enabled(SIX_WORKERS)


@pytest.fixture
def orchestrator(session_factory, dispatcher, registry, clock) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(
        session_factory,
        dispatcher,
        registry,
        job_timeout=timedelta(minutes=10),
        fetch_timeout=timedelta(minutes=15),
        anonymous_ttl=timedelta(hours=24),
        clock=clock,
    )


def make_asset_refs(analysis_id: str, asset_store=None, html: str = "<html></html>", **extra_assets) -> AssetRefs:
    """AssetRefs for ``analysis_id``; writes the assets when a store is given."""
    locators = {}
    if asset_store is not None:
        locators[AssetKind.html] = asset_store.write(analysis_id, AssetKind.html, html.encode("utf-8"))
        for name, data in extra_assets.items():
            kind = AssetKind(name)
            payload = data if isinstance(data, bytes) else data.encode("utf-8")
            locators[kind] = asset_store.write(analysis_id, kind, payload)
    else:
        locators[AssetKind.html] = f"memory://{analysis_id}/html"
    return AssetRefs(
        analysis_id=analysis_id,
        locators=locators,
        requested_url="https://example.com",
        final_url="https://example.com/",
        status_code=200,
    )


@pytest.fixture
def refs_for(asset_store):
    """Build AssetRefs whose assets are really stored in ``asset_store``."""
    def build(analysis_id: str, html: str = "<html></html>", **extra_assets) -> AssetRefs:
        return make_asset_refs(analysis_id, asset_store, html=html, **extra_assets)
    return build


# ============================================================================
# API fixtures
# ============================================================================

@pytest.fixture
def api_session_factory() -> Generator[sessionmaker, None, None]:
    """Sync sessions on the database the API's async engine reads."""
    factory = create_sync_session_factory()
    engine = factory.kw["bind"]
    Base.metadata.create_all(engine)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def api_orchestrator(api_session_factory, dispatcher, registry, clock) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(
        api_session_factory,
        dispatcher,
        registry,
        job_timeout=timedelta(minutes=10),
        fetch_timeout=timedelta(minutes=15),
        anonymous_ttl=timedelta(hours=24),
        clock=clock,
    )


@pytest.fixture
def client(api_orchestrator) -> Generator[TestClient, None, None]:
    """
    TestClient whose lifespan wires a pipeline around ``api_orchestrator``
    instead of connecting to Celery and Chrome.
    """
    pipeline = MagicMock()
    pipeline.orchestrator = api_orchestrator
    with patch("sitecraft.main.build_pipeline", return_value=pipeline):
        with TestClient(app) as test_client:
            yield test_client
    pipeline.close.assert_called_once()
