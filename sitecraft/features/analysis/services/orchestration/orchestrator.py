"""
Master orchestrator.

Owns the lifecycle of an analysis: creates the record, dispatches the fetch,
fans out one job per enabled worker once the page snapshot is durable, absorbs
worker reports and finalizes the analysis exactly once.

Every state change is a conditional UPDATE (``... WHERE status IN (...)``)
whose rowcount decides whether this call won the transition. Redelivered
tasks, late worker reports and the timeout sweep can therefore race freely:
whoever loses the compare-and-set becomes a no-op.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, exists, select, update
from sqlalchemy.orm import Session, sessionmaker

from sitecraft.features.analysis.exceptions import InvalidTarget, UpstreamUnavailable, WorkerTimeout
from sitecraft.features.analysis.models.analysis import Analysis, AnalysisStatus
from sitecraft.features.analysis.models.analysis_job import (
    ACTIVE_JOB_STATUSES,
    WORKER_CATEGORIES,
    AnalysisJob,
    JobStatus,
    WorkerKind,
)
from sitecraft.features.analysis.models.finding import Finding
from sitecraft.features.analysis.schemas.analysis import AssetRefs, FindingDraft, OwnerContext
from sitecraft.features.analysis.services.scoring import (
    JobOutcome,
    ScoredFinding,
    aggregate_status,
    compute_scores,
)
from sitecraft.platform.utils.url_validator import validate_url

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_REASON = "Timeout"
NO_WORKERS_REASON = "NoWorkersEnabled"
ALL_WORKERS_FAILED_REASON = "AllWorkersFailed"


@dataclass
class SweepReport:
    """What one pass of ``sweep_timeouts`` changed."""
    timed_out_jobs: List[str] = field(default_factory=list)
    timed_out_analyses: List[str] = field(default_factory=list)
    finalized_analyses: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, List[str]]:
        return {
            "timed_out_jobs": list(self.timed_out_jobs),
            "timed_out_analyses": list(self.timed_out_analyses),
            "finalized_analyses": list(self.finalized_analyses),
        }


class AnalysisOrchestrator:
    def __init__(
        self,
        session_factory: sessionmaker,
        dispatcher,
        registry,
        job_timeout: timedelta = timedelta(minutes=10),
        fetch_timeout: timedelta = timedelta(minutes=15),
        anonymous_ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._registry = registry
        self.job_timeout = job_timeout
        self.fetch_timeout = fetch_timeout
        self.anonymous_ttl = anonymous_ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Analysis lifecycle
    # ------------------------------------------------------------------

    def start_analysis(self, target: str, owner: Optional[OwnerContext] = None) -> str:
        """
        Create a pending analysis for ``target`` and dispatch its fetch.

        Returns as soon as the fetch is enqueued. Raises ``InvalidTarget``
        (nothing is created) or ``UpstreamUnavailable`` (the analysis is
        recorded as failed before the error is raised).
        """
        is_valid, normalized_url, error = validate_url(target or "")
        if not is_valid:
            raise InvalidTarget(error or f"Not an absolute http(s) URL: {target}")

        owner = owner or OwnerContext()
        now = self._clock()

        with self._session_factory() as session:
            analysis = Analysis(
                target_url=normalized_url,
                user_id=owner.user_id,
                workspace_id=owner.workspace_id,
                status=AnalysisStatus.pending,
                created_at=now,
                expires_at=now + self.anonymous_ttl if owner.is_anonymous else None,
            )
            session.add(analysis)
            session.flush()
            analysis_id = analysis.id
            session.commit()

        logger.info(f"[{analysis_id}] Analysis created for {normalized_url}")

        try:
            self._dispatcher.send_fetch(analysis_id)
        except UpstreamUnavailable as e:
            self._fail_pending_analysis(analysis_id, e.reason, str(e))
            raise

        return analysis_id

    def on_fetch_complete(self, analysis_id: str, asset_refs: AssetRefs) -> List[str]:
        """
        Move the analysis to processing and fan out one job per enabled worker.

        Returns the ids of the jobs created, or an empty list when the
        transition did not apply (duplicate delivery, analysis already failed).
        """
        now = self._clock()
        kinds = list(self._registry.kinds())

        with self._session_factory() as session:
            applied = self._transition_analysis(
                session,
                analysis_id,
                (AnalysisStatus.pending,),
                status=AnalysisStatus.processing,
                started_at=now,
                final_url=asset_refs.final_url,
                http_status=asset_refs.status_code,
            )
            if not applied:
                session.rollback()
                logger.info(f"[{analysis_id}] Fetch completion ignored: analysis is no longer pending")
                return []

            jobs = [
                AnalysisJob(
                    analysis_id=analysis_id,
                    worker=kind,
                    category=WORKER_CATEGORIES[kind],
                    status=JobStatus.pending,
                    deadline_at=now + self.job_timeout,
                )
                for kind in kinds
            ]
            session.add_all(jobs)
            session.flush()
            planned: List[Tuple[str, WorkerKind]] = [(job.id, job.worker) for job in jobs]
            session.commit()

        logger.info(f"[{analysis_id}] Fetch complete, dispatching {len(planned)} workers")

        if not planned:
            self._maybe_finalize(analysis_id)
            return []

        payload = asset_refs.model_dump(mode="json")
        for job_id, kind in planned:
            try:
                self._dispatcher.send_worker(kind, analysis_id, job_id, payload)
            except UpstreamUnavailable as e:
                # The job stays pending; the sweep fails it at its deadline
                logger.error(f"[{analysis_id}] Could not dispatch {kind.value} job {job_id}: {e}")

        return [job_id for job_id, _ in planned]

    def on_fetch_failed(self, analysis_id: str, reason: str, detail: Optional[str] = None) -> bool:
        """Fail a pending analysis; no jobs are created. No-op past pending."""
        applied = self._fail_pending_analysis(analysis_id, reason, detail)
        if not applied:
            logger.info(f"[{analysis_id}] Fetch failure ({reason}) ignored: analysis is no longer pending")
        return applied

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def on_job_started(self, job_id: str) -> bool:
        """
        Mark a job running. Returns whether the worker should evaluate.

        A redelivered task for a job that is still running proceeds (the
        previous attempt died before reporting); a terminal job does not.
        """
        with self._session_factory() as session:
            result = session.execute(
                update(AnalysisJob)
                .where(AnalysisJob.id == job_id, AnalysisJob.status == JobStatus.pending)
                .values(status=JobStatus.running, started_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                session.commit()
                return True

            status = session.execute(
                select(AnalysisJob.status).where(AnalysisJob.id == job_id)
            ).scalar_one_or_none()
            session.rollback()

        if status is None:
            logger.warning(f"Job {job_id} does not exist")
            return False
        if status == JobStatus.running:
            logger.info(f"Job {job_id} redelivered while running, evaluating again")
            return True
        logger.info(f"Job {job_id} is already {status.value}, skipping evaluation")
        return False

    def on_job_complete(self, job_id: str, findings: Iterable[FindingDraft]) -> bool:
        """
        Record a job as completed together with its findings.

        A report for a job that is already terminal is ignored. Findings whose
        rule key is outside the worker's rule set fail the job instead.
        Returns whether this report was applied.
        """
        findings = list(findings)

        with self._session_factory() as session:
            row = self._load_job(session, job_id)
        if row is None:
            return False
        analysis_id, kind, category = row

        worker = self._registry.get(kind)
        if worker is not None:
            unknown = sorted({f.rule_key for f in findings} - set(worker.rule_keys))
            if unknown:
                logger.error(f"[{analysis_id}] {kind.value} reported unknown rule keys: {unknown}")
                return self.on_job_failed(
                    job_id, "RuleEvaluationError", f"Unknown rule keys: {', '.join(unknown)}"
                )

        with self._session_factory() as session:
            applied = self._transition_job(
                session,
                job_id,
                status=JobStatus.completed,
                completed_at=self._clock(),
            )
            if not applied:
                session.rollback()
                logger.info(f"[{analysis_id}] Duplicate completion for {kind.value} job {job_id} ignored")
                return False

            session.add_all(
                Finding(
                    job_id=job_id,
                    analysis_id=analysis_id,
                    category=category,
                    rule_key=draft.rule_key,
                    severity=draft.severity,
                    location=draft.location,
                    metric_value=draft.metric_value,
                    message=draft.message,
                    remediation=draft.remediation,
                )
                for draft in findings
            )
            session.commit()

        logger.info(f"[{analysis_id}] {kind.value} job completed with {len(findings)} findings")
        self._maybe_finalize(analysis_id)
        return True

    def on_job_failed(self, job_id: str, reason: str, detail: Optional[str] = None) -> bool:
        """Record a job as failed with ``reason``; returns whether this report was applied."""
        with self._session_factory() as session:
            row = self._load_job(session, job_id)
            if row is None:
                return False
            analysis_id, kind, _ = row

            applied = self._transition_job(
                session,
                job_id,
                status=JobStatus.failed,
                failure_reason=reason[:64],
                error_message=detail,
                completed_at=self._clock(),
            )
            if not applied:
                session.rollback()
                logger.info(f"[{analysis_id}] Failure report ({reason}) for finished {kind.value} job ignored")
                return False
            session.commit()

        logger.warning(f"[{analysis_id}] {kind.value} job failed: {reason} {detail or ''}".rstrip())
        self._maybe_finalize(analysis_id)
        return True

    # ------------------------------------------------------------------
    # Timeout sweep
    # ------------------------------------------------------------------

    def sweep_timeouts(self) -> SweepReport:
        """
        Reclaim work that will never report back.

        1. pending/running jobs past their deadline fail with ``Timeout``;
        2. analyses still pending past the fetch deadline fail with ``Timeout``;
        3. processing analyses whose jobs are all terminal are finalized
           (covers a finalization that errored after the last report).
        """
        now = self._clock()
        report = SweepReport()

        with self._session_factory() as session:
            expired_jobs = session.execute(
                select(AnalysisJob.id).where(
                    AnalysisJob.status.in_(ACTIVE_JOB_STATUSES),
                    AnalysisJob.deadline_at <= now,
                )
            ).scalars().all()
            stalled_fetches = session.execute(
                select(Analysis.id).where(
                    Analysis.status == AnalysisStatus.pending,
                    Analysis.created_at <= now - self.fetch_timeout,
                )
            ).scalars().all()

        timeout = WorkerTimeout()
        for job_id in expired_jobs:
            if self.on_job_failed(job_id, timeout.reason, str(timeout)):
                report.timed_out_jobs.append(job_id)

        for analysis_id in stalled_fetches:
            if self._fail_pending_analysis(analysis_id, FETCH_TIMEOUT_REASON, "Fetch did not complete in time"):
                report.timed_out_analyses.append(analysis_id)

        with self._session_factory() as session:
            has_active_job = exists().where(
                and_(
                    AnalysisJob.analysis_id == Analysis.id,
                    AnalysisJob.status.in_(ACTIVE_JOB_STATUSES),
                )
            )
            unfinalized = session.execute(
                select(Analysis.id).where(Analysis.status == AnalysisStatus.processing, ~has_active_job)
            ).scalars().all()

        for analysis_id in unfinalized:
            if self._maybe_finalize(analysis_id) is not None:
                report.finalized_analyses.append(analysis_id)

        if report.timed_out_jobs or report.timed_out_analyses or report.finalized_analyses:
            logger.info(
                f"Sweep: {len(report.timed_out_jobs)} jobs timed out, "
                f"{len(report.timed_out_analyses)} fetches timed out, "
                f"{len(report.finalized_analyses)} analyses finalized"
            )
        return report

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _maybe_finalize(self, analysis_id: str) -> Optional[AnalysisStatus]:
        """Finalize if every job is terminal. Returns the terminal status when this call finalized."""
        with self._session_factory() as session:
            active = session.execute(
                select(AnalysisJob.id).where(
                    AnalysisJob.analysis_id == analysis_id,
                    AnalysisJob.status.in_(ACTIVE_JOB_STATUSES),
                ).limit(1)
            ).first()
            if active is not None:
                return None
            return self._finalize(session, analysis_id)

    def _finalize(self, session: Session, analysis_id: str) -> Optional[AnalysisStatus]:
        # processing -> finalizing, scores and terminal status share one transaction
        if not self._transition_analysis(
            session, analysis_id, (AnalysisStatus.processing,), status=AnalysisStatus.finalizing
        ):
            session.rollback()
            return None

        try:
            jobs = [
                JobOutcome(*row)
                for row in session.execute(
                    select(AnalysisJob.id, AnalysisJob.category, AnalysisJob.status)
                    .where(AnalysisJob.analysis_id == analysis_id)
                ).all()
            ]
            if any(job.status in ACTIVE_JOB_STATUSES for job in jobs):
                session.rollback()
                return None

            findings = [
                ScoredFinding(*row)
                for row in session.execute(
                    select(Finding.job_id, Finding.category, Finding.severity)
                    .where(Finding.analysis_id == analysis_id)
                ).all()
            ]

            status = aggregate_status(job.status for job in jobs)
            score_card = compute_scores(findings, jobs)

            values = score_card.as_columns()
            values.update(status=status, completed_at=self._clock())
            if status == AnalysisStatus.failed:
                values["failure_reason"] = ALL_WORKERS_FAILED_REASON if jobs else NO_WORKERS_REASON

            self._transition_analysis(session, analysis_id, (AnalysisStatus.finalizing,), **values)
            session.commit()
        except Exception:
            # Rolls back to processing; the sweep retries the finalization
            session.rollback()
            logger.exception(f"[{analysis_id}] Finalization failed")
            return None

        logger.info(
            f"[{analysis_id}] Analysis finalized as {status.value} "
            f"(overall={score_card.overall}, missing={[c.value for c in score_card.missing_categories]})"
        )
        return status

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fail_pending_analysis(self, analysis_id: str, reason: str, detail: Optional[str]) -> bool:
        with self._session_factory() as session:
            applied = self._transition_analysis(
                session,
                analysis_id,
                (AnalysisStatus.pending,),
                status=AnalysisStatus.failed,
                failure_reason=reason[:64],
                failure_detail=detail,
                completed_at=self._clock(),
            )
            if applied:
                session.commit()
            else:
                session.rollback()

        if applied:
            logger.warning(f"[{analysis_id}] Analysis failed: {reason}")
        return applied

    @staticmethod
    def _transition_analysis(session: Session, analysis_id: str, from_statuses, **values) -> bool:
        result = session.execute(
            update(Analysis)
            .where(Analysis.id == analysis_id, Analysis.status.in_(from_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def _transition_job(session: Session, job_id: str, **values) -> bool:
        result = session.execute(
            update(AnalysisJob)
            .where(AnalysisJob.id == job_id, AnalysisJob.status.in_(ACTIVE_JOB_STATUSES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def _load_job(session: Session, job_id: str):
        row = session.execute(
            select(AnalysisJob.analysis_id, AnalysisJob.worker, AnalysisJob.category)
            .where(AnalysisJob.id == job_id)
        ).first()
        if row is None:
            logger.warning(f"Report for unknown job {job_id} ignored")
        return row
