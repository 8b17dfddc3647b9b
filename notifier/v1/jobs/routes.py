"""
Administrative API for the notification queue.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.config.logging import get_logger
from notifier.config.settings import Settings, SettingsDep
from notifier.infra.database import get_session
from notifier.v1.core.exceptions import (
    NotFoundError,
    PipelineError,
    ValidationError,
    create_success_response,
)
from notifier.v1.jobs.models import JobStatus
from notifier.v1.jobs.producer import JobProducer
from notifier.v1.jobs.schemas import JobEnqueueRequest, JobEnqueueResponse, JobResponse
from notifier.v1.jobs.service import JobService

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_producer(request: Request, settings: Settings = SettingsDep) -> JobProducer:
    """Producer bound to the broker owned by the running application."""
    return JobProducer(request.app.state.broker, settings)


@router.post("", response_model=dict, status_code=202)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    producer: JobProducer = Depends(get_producer),
) -> dict[str, Any]:
    """Enqueue a notification job (internal producer endpoint)."""
    try:
        job_id = await producer.enqueue(job_request.type, job_request.payload, job_request.target)
    except PipelineError as e:
        # The job could never be rendered; reject it instead of queueing it
        raise ValidationError(e.message, e.details) from e

    logger.info("job_enqueued_via_api", job_id=job_id, job_type=job_request.type)

    response = JobEnqueueResponse(job_id=job_id, status=JobStatus.PENDING)
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("", response_model=dict)
async def list_jobs(
    status: list[JobStatus] | None = Query(default=None, description="Filter by status"),
    type: str | None = Query(default=None, description="Filter by job type"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List jobs with filtering and pagination."""
    job_service = JobService(settings)
    jobs = await job_service.list_jobs(
        session, status=status, job_type=type, limit=limit, offset=offset
    )
    return create_success_response(data=jobs.model_dump(mode="json"))


@router.get("/stats/overview", response_model=dict)
async def get_job_stats(
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get queue statistics."""
    stats = await JobService(settings).get_job_stats(session)
    return create_success_response(data=stats.model_dump())


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: int,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get a specific job by ID."""
    job = await JobService(settings).get_job_by_id(session, job_id)

    if not job:
        raise NotFoundError("Job not found", {"job_id": job_id})

    return create_success_response(data=JobResponse.model_validate(job).model_dump(mode="json"))


@router.post("/{job_id}/replay", response_model=dict)
async def replay_job(
    job_id: int,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Re-queue a permanently failed job."""
    replay_id = await JobService(settings).replay_job(session, job_id)

    if replay_id is None:
        raise HTTPException(
            status_code=404, detail="Job not found or not in failed_permanent state"
        )

    logger.info("job_replayed_via_api", job_id=job_id, replay_job_id=replay_id)

    return create_success_response(data={"job_id": job_id, "replay_job_id": replay_id})


@router.post("/maintenance/cleanup", response_model=dict)
async def cleanup_jobs(
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Delete terminal jobs past the retention window."""
    deleted = await JobService(settings).cleanup_old_jobs(session)
    return create_success_response(
        data={"deleted_count": deleted, "retention_days": settings.job_cleanup_after_days}
    )
