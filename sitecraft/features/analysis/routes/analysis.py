import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from sitecraft.features.analysis.models.analysis import AnalysisCategory, AnalysisStatus
from sitecraft.features.analysis.models.finding import FindingSeverity
from sitecraft.features.analysis.schemas.analysis import (
    AnalysisStartRequest,
    AnalysisStartResponse,
    OwnerContext,
)
from sitecraft.features.analysis.services.orchestration import AnalysisOrchestrator
from sitecraft.features.analysis.services.reading import AnalysisReader
from sitecraft.platform.db.session import get_db
from sitecraft.platform.response import api_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyses", tags=["analyses"])


def get_orchestrator(request: Request) -> AnalysisOrchestrator:
    return request.app.state.pipeline.orchestrator


@router.post("", summary="Start an analysis", status_code=status.HTTP_202_ACCEPTED)
async def start_analysis(
    payload: AnalysisStartRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """
    Queue an analysis of ``url`` and return its id immediately.

    The URL may omit its scheme (https is assumed). Poll
    ``GET /analyses/{analysis_id}`` for progress.
    """
    owner = OwnerContext(user_id=payload.user_id, workspace_id=payload.workspace_id)
    analysis_id = await run_in_threadpool(orchestrator.start_analysis, payload.url, owner)

    return api_response(
        data=AnalysisStartResponse(analysis_id=analysis_id, status=AnalysisStatus.pending),
        message="Analysis started",
        status_code=status.HTTP_202_ACCEPTED,
    )


@router.get("/{analysis_id}", summary="Analysis status and scores")
async def get_analysis(analysis_id: str, db: AsyncSession = Depends(get_db)):
    analysis = await AnalysisReader(db).get_status(analysis_id)
    if analysis is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Analysis not found")

    return api_response(data=analysis, message="Analysis retrieved")


@router.get("/{analysis_id}/findings", summary="Findings of an analysis")
async def list_findings(
    analysis_id: str,
    category: Optional[AnalysisCategory] = Query(None, description="Only findings of this category"),
    severity: Optional[FindingSeverity] = Query(None, description="Only findings of this severity"),
    db: AsyncSession = Depends(get_db),
):
    findings = await AnalysisReader(db).list_findings(analysis_id, category=category, severity=severity)
    if findings is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Analysis not found")

    return api_response(data=findings, message=f"{findings.total} findings")
