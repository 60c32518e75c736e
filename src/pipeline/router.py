"""Pipeline API routes: staging uploads, job submission, status and termination."""

from __future__ import annotations

from pathlib import Path
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.core.config import get_settings, staging_root
from src.core.logger import get_logger
from src.orchestrator.runtime import PipelineRuntime, get_pipeline_runtime
from src.orchestrator.staging import UPLOAD_KIND_SPREADSHEET, UPLOAD_KINDS
from src.pipeline.errors import BrokerFailure, ValidationError
from src.schemas.pipeline import (
    JobStatusResponse,
    JobSubmitRequest,
    JobSubmitResponse,
    PipelineStateResponse,
    TerminationRequest,
    TerminationResponse,
    UploadStagedResponse,
)


router = APIRouter(prefix="/pipeline", tags=["pipeline"])
logger = get_logger("loomreach.pipeline.router")

_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,64}$")
_DEFAULT_SUFFIXES = {UPLOAD_KIND_SPREADSHEET: ".xlsx", "overlay": ".webm"}
_ALLOWED_SUFFIXES = {
    UPLOAD_KIND_SPREADSHEET: {".xlsx", ".xlsm"},
    "overlay": {".webm", ".mp4", ".mov", ".mkv"},
}


def _broker_unavailable(exc: BrokerFailure) -> HTTPException:
    logger.error("pipeline_broker_unavailable", error=str(exc))
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Job broker unavailable")


@router.put("/uploads/{token}/{kind}", response_model=UploadStagedResponse)
async def stage_upload(
    token: str,
    kind: str,
    request: Request,
    filename: Optional[str] = None,
    runtime: PipelineRuntime = Depends(get_pipeline_runtime),
) -> UploadStagedResponse:
    if not _TOKEN_PATTERN.match(token):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid upload token")
    if kind not in UPLOAD_KINDS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported upload kind")

    suffix = Path(filename).suffix.lower() if filename else _DEFAULT_SUFFIXES[kind]
    if suffix not in _ALLOWED_SUFFIXES[kind]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported file type")

    content = await request.body()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty upload")

    target_dir = staging_root(get_settings().work_dir) / token
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / f"{kind}{suffix}"
    target.write_bytes(content)

    try:
        runtime.staging.stage(token, kind, str(target))
    except BrokerFailure as exc:
        raise _broker_unavailable(exc) from exc
    return UploadStagedResponse(upload_token=token, kind=kind, size_bytes=len(content))


@router.post("/jobs", response_model=JobSubmitResponse, status_code=status.HTTP_202_ACCEPTED)
def submit_job(
    payload: JobSubmitRequest,
    runtime: PipelineRuntime = Depends(get_pipeline_runtime),
) -> JobSubmitResponse:
    try:
        submission = runtime.submissions.submit(
            user_id=payload.user_id,
            upload_token=payload.upload_token,
            requested_video_count=payload.requested_video_count,
            folder_id=payload.folder_id,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except BrokerFailure as exc:
        raise _broker_unavailable(exc) from exc
    return JobSubmitResponse(job_id=submission.job_id, state="queued")


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
def get_job(
    job_id: str,
    runtime: PipelineRuntime = Depends(get_pipeline_runtime),
) -> JobStatusResponse:
    try:
        job = runtime.queue.get_job(job_id)
    except BrokerFailure as exc:
        raise _broker_unavailable(exc) from exc
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")

    summary = job.get("result") or None
    results = list((summary or {}).get("results") or [])
    return JobStatusResponse(
        job_id=job_id,
        state=job.get("state"),
        attempts=int(job.get("attempts") or 0),
        submitted_at=job.get("submitted_at"),
        finished_at=job.get("finished_at"),
        error=job.get("error"),
        results=results,
        summary=summary,
    )


@router.post("/terminate", response_model=TerminationResponse, status_code=status.HTTP_202_ACCEPTED)
def terminate(
    payload: Optional[TerminationRequest] = None,
    runtime: PipelineRuntime = Depends(get_pipeline_runtime),
) -> TerminationResponse:
    reason = payload.reason if payload is not None else "operator"
    ack = runtime.controller.request_termination(reason, wait=False)
    return TerminationResponse(
        accepted=ack.accepted,
        state=ack.state,
        reason=ack.reason,
        requested_at=ack.requested_at,
    )


@router.get("/state", response_model=PipelineStateResponse)
def pipeline_state(runtime: PipelineRuntime = Depends(get_pipeline_runtime)) -> PipelineStateResponse:
    try:
        counts = runtime.queue.counts()
    except BrokerFailure as exc:
        raise _broker_unavailable(exc) from exc
    pool = runtime.controller.pool
    return PipelineStateResponse(
        state=runtime.controller.state,
        generation=runtime.controller.generation,
        terminating=runtime.termination_flag.is_set(),
        pending_completions=runtime.completions.pending_count(),
        workers_alive=pool.alive_count() if pool is not None else 0,
        queue=counts,
    )
