"""
Administrative job operations: listing, statistics, replay and retention.
"""

from datetime import UTC, datetime, timedelta

from sqlalchemy import and_, delete, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.config.logging import get_logger
from notifier.config.settings import Settings
from notifier.v1.jobs.models import JobRecord, JobStatus
from notifier.v1.jobs.schemas import JobListResponse, JobResponse, JobStatsResponse

logger = get_logger(__name__)


class JobService:
    """Operator-facing view over the job table."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def list_jobs(
        self,
        session: AsyncSession,
        status: list[JobStatus] | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> JobListResponse:
        """List jobs newest first, optionally filtered by status and type."""
        base_query = select(JobRecord)

        if status:
            base_query = base_query.where(JobRecord.status.in_([s.value for s in status]))

        if job_type:
            base_query = base_query.where(JobRecord.type == job_type)

        count_query = select(func.count()).select_from(base_query.subquery())
        total = (await session.execute(count_query)).scalar() or 0

        jobs_query = (
            base_query.order_by(desc(JobRecord.created_at), desc(JobRecord.id))
            .offset(offset)
            .limit(limit)
        )
        jobs = (await session.execute(jobs_query)).scalars().all()

        return JobListResponse(
            jobs=[JobResponse.model_validate(job) for job in jobs],
            total=total,
            limit=limit,
            offset=offset,
        )

    async def get_job_by_id(self, session: AsyncSession, job_id: int) -> JobRecord | None:
        """Get job by ID."""
        return await session.get(JobRecord, job_id)

    async def get_job_stats(self, session: AsyncSession) -> JobStatsResponse:
        """Get job statistics."""
        total_jobs = (await session.execute(select(func.count(JobRecord.id)))).scalar() or 0

        status_result = await session.execute(
            select(JobRecord.status, func.count(JobRecord.id)).group_by(JobRecord.status)
        )
        by_status = dict(status_result.all())

        type_result = await session.execute(
            select(JobRecord.type, func.count(JobRecord.id)).group_by(JobRecord.type)
        )
        by_type = dict(type_result.all())

        queue_depth = by_status.get(JobStatus.PENDING.value, 0) + by_status.get(
            JobStatus.IN_FLIGHT.value, 0
        )

        one_hour_ago = datetime.now(UTC) - timedelta(hours=1)
        failed_last_hour = (
            await session.execute(
                select(func.count(JobRecord.id)).where(
                    JobRecord.status == JobStatus.FAILED_PERMANENT.value,
                    JobRecord.updated_at >= one_hour_ago,
                )
            )
        ).scalar() or 0

        return JobStatsResponse(
            total_jobs=total_jobs,
            by_status=by_status,
            by_type=by_type,
            queue_depth=queue_depth,
            failed_last_hour=failed_last_hour,
        )

    async def replay_job(self, session: AsyncSession, job_id: int) -> int | None:
        """
        Re-queue a permanently failed job.

        The failed record stays terminal for diagnosis; a fresh pending copy with
        the same type, payload, target and attempt limit is inserted and its id
        returned. Replaying the same job again returns the existing copy instead
        of queueing another one. Returns None when the job does not exist or has
        not failed permanently.
        """
        original = await session.get(JobRecord, job_id)
        if original is None or original.status != JobStatus.FAILED_PERMANENT.value:
            return None
        if original.replayed_as_id is not None:
            return original.replayed_as_id

        now = datetime.now(UTC)
        replay = JobRecord(
            type=original.type,
            payload=dict(original.payload),
            target=original.target,
            status=JobStatus.PENDING.value,
            attempt_count=0,
            max_attempts=original.max_attempts,
            available_at=now,
            created_at=now,
            updated_at=now,
        )
        session.add(replay)
        await session.flush()

        # Only one concurrent replay may link its copy to the failed record
        linked = await session.execute(
            update(JobRecord)
            .where(
                JobRecord.id == job_id,
                JobRecord.status == JobStatus.FAILED_PERMANENT.value,
                JobRecord.replayed_as_id.is_(None),
            )
            .values(replayed_as_id=replay.id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if linked.rowcount == 0:
            await session.rollback()
            existing = await session.scalar(
                select(JobRecord.replayed_as_id).where(JobRecord.id == job_id)
            )
            logger.info("job_replay_already_queued", job_id=job_id, replay_job_id=existing)
            return existing

        replay_id = replay.id
        await session.commit()

        logger.info("job_replayed", job_id=job_id, replay_job_id=replay_id)
        return replay_id

    async def cleanup_old_jobs(self, session: AsyncSession) -> int:
        """Delete terminal jobs older than the retention window."""
        retention_days = self.settings.job_cleanup_after_days
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)

        result = await session.execute(
            delete(JobRecord)
            .where(
                and_(
                    JobRecord.status.in_([s.value for s in JobStatus.terminal()]),
                    JobRecord.updated_at < cutoff,
                )
            )
            .execution_options(synchronize_session=False)
        )
        deleted_count = result.rowcount
        await session.commit()

        if deleted_count > 0:
            logger.info(
                "old_jobs_cleaned",
                deleted_count=deleted_count,
                retention_days=retention_days,
            )

        return deleted_count
