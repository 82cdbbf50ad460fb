"""
Celery task wiring. Tasks are called in-process through ``.run`` with the
process pipeline replaced by one built on the test database.
"""
from unittest.mock import MagicMock, patch

import httpx
import pytest

from sitecraft.features.analysis.exceptions import NavigationTimeout
from sitecraft.features.analysis.models.analysis import Analysis, AnalysisStatus
from sitecraft.features.analysis.models.asset import AssetKind
from sitecraft.features.analysis.services.fetching import PageFetcher
from sitecraft.features.analysis.services.pipeline import Pipeline
from sitecraft.features.analysis.workers.tasks import evaluate_rules, fetch_page, sweep_stalled_jobs
from sitecraft.platform.storage.asset_store import AssetExists

from conftest import make_asset_refs
from test_fetcher import PAGE, make_driver, site


@pytest.fixture
def fetcher():
    return MagicMock()


@pytest.fixture
def pipeline(session_factory, dispatcher, registry, asset_store, orchestrator, fetcher):
    pipeline = Pipeline(
        session_factory=session_factory,
        dispatcher=dispatcher,
        registry=registry,
        asset_store=asset_store,
        orchestrator=orchestrator,
        fetcher=fetcher,
    )
    with patch("sitecraft.features.analysis.workers.tasks.current_pipeline", return_value=pipeline):
        yield pipeline


def _status(session_factory, analysis_id):
    with session_factory() as session:
        return session.get(Analysis, analysis_id).status


class TestFetchPage:
    def test_fetch_fans_out_jobs(self, pipeline, orchestrator, fetcher, dispatcher, asset_store):
        analysis_id = orchestrator.start_analysis("example.com")
        fetcher.fetch.side_effect = lambda aid, url: make_asset_refs(aid, asset_store)

        result = fetch_page.run(analysis_id)

        assert result == {"analysis_id": analysis_id, "status": "fetched", "jobs": 6}
        fetcher.fetch.assert_called_once_with(analysis_id, "https://example.com")
        assert len(dispatcher.workers) == 6

    def test_fetch_error_fails_the_analysis(self, pipeline, orchestrator, fetcher, session_factory):
        analysis_id = orchestrator.start_analysis("example.com")
        fetcher.fetch.side_effect = NavigationTimeout("slow")

        result = fetch_page.run(analysis_id)

        assert result["status"] == "failed"
        assert result["reason"] == "NavigationTimeout"
        assert _status(session_factory, analysis_id) == AnalysisStatus.failed

    def test_duplicate_delivery_leaves_analysis_alone(self, pipeline, orchestrator, fetcher, session_factory):
        analysis_id = orchestrator.start_analysis("example.com")
        fetcher.fetch.side_effect = AssetExists("html already stored")

        assert fetch_page.run(analysis_id)["status"] == "duplicate"
        assert _status(session_factory, analysis_id) == AnalysisStatus.pending

    def test_redelivery_after_a_dead_attempt_completes_the_fetch(
        self, pipeline, orchestrator, asset_store, session_factory, dispatcher
    ):
        analysis_id = orchestrator.start_analysis("example.com")
        # The first attempt stored the page, then died before committing its Asset rows
        asset_store.write(analysis_id, AssetKind.html, b"<html>earlier</html>")
        pipeline.fetcher = PageFetcher(
            asset_store,
            session_factory,
            driver_factory=make_driver,
            http_client=httpx.Client(transport=httpx.MockTransport(site())),
            timeout=5,
        )

        result = fetch_page.run(analysis_id)

        assert result == {"analysis_id": analysis_id, "status": "fetched", "jobs": 6}
        assert _status(session_factory, analysis_id) == AnalysisStatus.processing
        refs = dispatcher.workers[0][3]
        assert asset_store.read_text(refs["locators"]["html"]) == PAGE

    def test_redelivery_after_rows_were_committed_reuses_the_snapshot(
        self, pipeline, orchestrator, asset_store, session_factory, dispatcher
    ):
        analysis_id = orchestrator.start_analysis("example.com")
        driver = make_driver()
        pipeline.fetcher = PageFetcher(
            asset_store,
            session_factory,
            driver_factory=lambda: driver,
            http_client=httpx.Client(transport=httpx.MockTransport(site())),
            timeout=5,
        )
        # The first attempt stored everything, then died before reporting
        pipeline.fetcher.fetch(analysis_id, "https://example.com")

        assert fetch_page.run(analysis_id)["status"] == "fetched"
        assert driver.get.call_count == 1
        assert len(dispatcher.workers) == 6

    def test_analysis_past_pending_is_not_fetched(self, pipeline, orchestrator, fetcher, asset_store):
        analysis_id = orchestrator.start_analysis("example.com")
        orchestrator.on_fetch_complete(analysis_id, make_asset_refs(analysis_id, asset_store))

        assert fetch_page.run(analysis_id)["status"] == "skipped"
        fetcher.fetch.assert_not_called()

    def test_unknown_analysis(self, pipeline, fetcher):
        assert fetch_page.run("nope")["status"] == "missing"
        fetcher.fetch.assert_not_called()


class TestEvaluateRules:
    def test_runs_worker_and_reports(self, pipeline, orchestrator, dispatcher, asset_store):
        analysis_id = orchestrator.start_analysis("example.com")
        orchestrator.on_fetch_complete(analysis_id, make_asset_refs(analysis_id, asset_store))
        kind, _, job_id, payload = dispatcher.workers[0]

        result = evaluate_rules.run(kind.value, analysis_id, job_id, payload)

        assert result == {"analysis_id": analysis_id, "job_id": job_id, "worker": kind.value, "status": "completed"}
        # Redelivery of the same task is a no-op
        assert evaluate_rules.run(kind.value, analysis_id, job_id, payload)["status"] == "skipped"


def test_sweep_reports_what_it_reclaimed(pipeline, orchestrator, clock):
    analysis_id = orchestrator.start_analysis("example.com")
    clock.advance(minutes=16)

    report = sweep_stalled_jobs.run()

    assert report["timed_out_analyses"] == [analysis_id]
    assert report["timed_out_jobs"] == []
