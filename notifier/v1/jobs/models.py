"""
Job storage model for the notification queue.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    BigInteger,
    CheckConstraint,
    Index,
    Integer,
    SmallInteger,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from notifier.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    FAILED_PERMANENT = "failed_permanent"

    @classmethod
    def terminal(cls) -> tuple["JobStatus", ...]:
        return (cls.COMPLETED, cls.FAILED_PERMANENT)


class JobRecord(Base):
    """
    Persisted job envelope.

    Worker coordination uses a lease: a claim stamps ``claimed_by`` and
    ``lease_expires_at``, heartbeats push the expiry forward, and an expired
    lease makes the job recoverable by any other worker.
    """

    __tablename__ = "jobs"

    # Core fields
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    type: Mapped[str] = mapped_column(Text, nullable=False, comment="Job type identifier")
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Type-dependent template data"
    )
    target: Mapped[str] = mapped_column(Text, nullable=False, comment="Delivery destination")

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: pending|in_flight|completed|failed_permanent",
    )
    attempt_count: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Failed attempts so far"
    )
    max_attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=3, comment="Attempts before permanent failure"
    )
    available_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        comment="Earliest time the job may be claimed",
    )

    # Worker coordination
    claimed_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker slot holding the lease"
    )
    claimed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="When the lease was taken"
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Lease deadline"
    )

    # Replay link
    replayed_as_id: Mapped[int | None] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        nullable=True,
        comment="Id of the pending copy created when this failed job was replayed",
    )

    # Results
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Delivery outcome of the successful attempt"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    last_attempt_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_flight', 'completed', 'failed_permanent')",
            name="jobs_status_check",
        ),
        CheckConstraint("attempt_count <= max_attempts", name="jobs_attempts_check"),
        Index("ix_jobs_status_available_at", "status", "available_at"),
        Index("ix_jobs_status_lease_expires_at", "status", "lease_expires_at"),
        Index("ix_jobs_type_status", "type", "status"),
    )
