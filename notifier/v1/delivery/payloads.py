"""
Job types and the payload shape each one carries.
"""

from datetime import datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class JobType(str, Enum):
    """Notification kinds a producer can enqueue."""

    BOOKING_CONFIRMATION = "BOOKING_CONFIRMATION"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    WELCOME = "WELCOME"
    ORG_INVITE = "ORG_INVITE"


class JobPayload(BaseModel):
    """Base payload: unknown keys are ignored so producers can add fields."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class BookingConfirmationPayload(JobPayload):
    booking_id: int | str | None = Field(
        default=None, validation_alias=AliasChoices("booking_id", "bookingId")
    )
    title: str = Field(..., min_length=1)
    start: datetime
    end: datetime | None = None


class BookingCancelledPayload(JobPayload):
    booking_id: int | str | None = Field(
        default=None, validation_alias=AliasChoices("booking_id", "bookingId")
    )
    title: str = Field(..., min_length=1)


class WelcomePayload(JobPayload):
    name: str = Field(..., min_length=1)


class OrgInvitePayload(JobPayload):
    org_name: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("org_name", "orgName")
    )
    role: str = Field(default="member")


PAYLOAD_MODELS: dict[JobType, type[JobPayload]] = {
    JobType.BOOKING_CONFIRMATION: BookingConfirmationPayload,
    JobType.BOOKING_CANCELLED: BookingCancelledPayload,
    JobType.WELCOME: WelcomePayload,
    JobType.ORG_INVITE: OrgInvitePayload,
}
