"""
Read side of the analysis API.

Async queries over the same tables the pipeline writes. Readers never see
``finalizing`` (it is committed together with the terminal status) and only
ever see findings of completed jobs, since findings are written in the same
transaction that completes their job.
"""
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitecraft.features.analysis.models.analysis import Analysis, AnalysisCategory
from sitecraft.features.analysis.models.analysis_job import AnalysisJob, JobStatus
from sitecraft.features.analysis.models.finding import Finding, FindingSeverity
from sitecraft.features.analysis.schemas.analysis import (
    AnalysisStatusResponse,
    CategoryScores,
    FindingListResponse,
    FindingResponse,
    JobSummary,
)

SEVERITY_ORDER = {severity: rank for rank, severity in enumerate(FindingSeverity)}


class AnalysisReader:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_status(self, analysis_id: str) -> Optional[AnalysisStatusResponse]:
        analysis = await self.db.get(Analysis, analysis_id)
        if analysis is None:
            return None

        result = await self.db.execute(
            select(AnalysisJob)
            .where(AnalysisJob.analysis_id == analysis_id)
            .order_by(AnalysisJob.created_at, AnalysisJob.worker)
        )
        jobs = result.scalars().all()

        return AnalysisStatusResponse(
            analysis_id=analysis.id,
            target_url=analysis.target_url,
            final_url=analysis.final_url,
            status=analysis.status,
            failure_reason=analysis.failure_reason,
            scores=CategoryScores(
                overall=analysis.score_overall,
                accessibility=analysis.score_accessibility,
                seo=analysis.score_seo,
                performance=analysis.score_performance,
            ),
            missing_categories=[AnalysisCategory(c) for c in analysis.missing_categories or []],
            partial_categories=[AnalysisCategory(c) for c in analysis.partial_categories or []],
            jobs=[
                JobSummary(
                    job_id=job.id,
                    worker=job.worker,
                    category=job.category,
                    status=job.status,
                    failure_reason=job.failure_reason,
                    started_at=job.started_at,
                    completed_at=job.completed_at,
                )
                for job in jobs
            ],
            created_at=analysis.created_at,
            completed_at=analysis.completed_at,
            expires_at=analysis.expires_at,
        )

    async def list_findings(
        self,
        analysis_id: str,
        category: Optional[AnalysisCategory] = None,
        severity: Optional[FindingSeverity] = None,
    ) -> Optional[FindingListResponse]:
        analysis = await self.db.get(Analysis, analysis_id)
        if analysis is None:
            return None

        query = (
            select(Finding, AnalysisJob.worker)
            .join(AnalysisJob, Finding.job_id == AnalysisJob.id)
            .where(
                Finding.analysis_id == analysis_id,
                AnalysisJob.status == JobStatus.completed,
            )
        )
        if category is not None:
            query = query.where(Finding.category == category)
        if severity is not None:
            query = query.where(Finding.severity == severity)

        rows = (await self.db.execute(query)).all()
        rows = sorted(rows, key=lambda row: (SEVERITY_ORDER[row[0].severity], row[0].rule_key))

        counts: Dict[FindingSeverity, int] = {s: 0 for s in FindingSeverity}
        findings = []
        for finding, worker in rows:
            counts[finding.severity] += 1
            findings.append(FindingResponse(
                finding_id=finding.id,
                worker=worker,
                category=finding.category,
                rule_key=finding.rule_key,
                severity=finding.severity,
                location=finding.location,
                metric_value=finding.metric_value,
                message=finding.message,
                remediation=finding.remediation,
            ))

        return FindingListResponse(
            analysis_id=analysis_id,
            total=len(findings),
            counts_by_severity=counts,
            findings=findings,
        )
