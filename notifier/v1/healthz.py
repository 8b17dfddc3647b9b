from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.config.logging import get_logger
from notifier.config.settings import Settings, SettingsDep
from notifier.infra.database import get_session
from notifier.v1.core.exceptions import create_success_response
from notifier.v1.jobs.models import JobRecord, JobStatus

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Queue and worker health status."""

    active_workers: int
    expired_leases: int = 0
    queue_depth: int = 0
    failed_permanent: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check with database and queue status."""
    db_health = await _check_database_health(session)

    queue_health = None
    if db_health.connected:
        try:
            queue_health = await _check_queue_health(session)
        except Exception as e:
            # Queue metrics are informational; they don't fail the health check
            logger.warning("queue_health_check_failed", error=str(e))

    health_data = {
        "ok": db_health.connected,
        "version": settings.version,
        "environment": settings.environment,
        "email_provider": settings.email_provider.value,
        "timestamp": datetime.now(UTC).isoformat(),
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump() if queue_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))
        response_time_ms = (datetime.now(UTC) - start_time).total_seconds() * 1000
        return DatabaseHealth(connected=True, response_time_ms=round(response_time_ms, 2))

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(session: AsyncSession) -> QueueHealth:
    """Count live workers, abandoned leases and queued work."""
    now = datetime.now(UTC)

    active_workers = (
        await session.execute(
            select(func.count(func.distinct(JobRecord.claimed_by))).where(
                JobRecord.status == JobStatus.IN_FLIGHT.value,
                JobRecord.lease_expires_at >= now,
            )
        )
    ).scalar() or 0

    expired_leases = (
        await session.execute(
            select(func.count(JobRecord.id)).where(
                JobRecord.status == JobStatus.IN_FLIGHT.value,
                JobRecord.lease_expires_at < now - timedelta(seconds=1),
            )
        )
    ).scalar() or 0

    status_counts = dict(
        (
            await session.execute(
                select(JobRecord.status, func.count(JobRecord.id)).group_by(JobRecord.status)
            )
        ).all()
    )

    return QueueHealth(
        active_workers=active_workers,
        expired_leases=expired_leases,
        queue_depth=status_counts.get(JobStatus.PENDING.value, 0)
        + status_counts.get(JobStatus.IN_FLIGHT.value, 0),
        failed_permanent=status_counts.get(JobStatus.FAILED_PERMANENT.value, 0),
    )
