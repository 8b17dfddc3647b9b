"""
Job envelope and API schemas.
"""

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from notifier.v1.jobs.models import JobStatus


def _ensure_utc(value: datetime | None) -> datetime | None:
    # SQLite hands timestamps back without tzinfo; they are stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


class JobCreate(BaseModel):
    """Schema for inserting a new job."""

    type: str = Field(..., min_length=1, description="Job type identifier")
    payload: dict[str, Any] = Field(default_factory=dict, description="Template data")
    target: str = Field(..., min_length=1, description="Delivery destination")
    max_attempts: int | None = Field(
        default=None, ge=1, description="Override of the configured attempt limit"
    )


class JobEnvelope(BaseModel):
    """
    The unit of work handed to workers.

    ``type``, ``id`` and ``attempt_count`` are part of the stable wire shape;
    payload fields may only be added, never renamed.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    payload: dict[str, Any]
    target: str
    status: JobStatus
    attempt_count: int
    max_attempts: int
    created_at: UtcDatetime
    last_attempt_at: UtcDatetime | None = None
    claimed_by: str | None = None
    lease_expires_at: UtcDatetime | None = None

    @property
    def attempt(self) -> int:
        """1-based number of the attempt currently being made."""
        return self.attempt_count + 1


class JobResponse(JobEnvelope):
    """Schema for job API responses."""

    available_at: UtcDatetime
    claimed_at: UtcDatetime | None = None
    result: dict[str, Any] | None = None
    last_error: str | None = None
    completed_at: UtcDatetime | None = None
    updated_at: UtcDatetime
    replayed_as_id: int | None = None


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int  # pending + in_flight
    failed_last_hour: int


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    type: str = Field(..., description="Job type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    target: str = Field(..., min_length=1, description="Recipient address")


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: int
    status: JobStatus
