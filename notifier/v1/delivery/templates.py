"""
Message templates, one per job type.

Rendering is pure: no I/O, no clock, no randomness. The same payload always
yields the same message, and messages are rebuilt on every attempt rather than
stored.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from html import escape
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from notifier.v1.core.exceptions import TemplateError, UnknownJobTypeError
from notifier.v1.delivery.payloads import (
    PAYLOAD_MODELS,
    BookingCancelledPayload,
    BookingConfirmationPayload,
    JobPayload,
    JobType,
    OrgInvitePayload,
    WelcomePayload,
)

SIGNATURE = "Scheduling App Team"


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str
    html: str | None = None


def _format_when(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%d %H:%M UTC")


def _layout(heading: str, accent: str, inner: str) -> str:
    return (
        '<div style="font-family: sans-serif; max-width: 600px; margin: auto; '
        'border: 1px solid #e0e0e0; border-radius: 8px; overflow: hidden;">'
        f'<div style="background:{accent}; padding: 24px; color: white;">'
        f'<h1 style="margin:0; font-size:22px;">{escape(heading)}</h1></div>'
        f'<div style="padding: 24px;">{inner}'
        f'<p style="color:#6b7280; font-size:14px;">{SIGNATURE}</p></div></div>'
    )


def render_booking_confirmation(payload: BookingConfirmationPayload) -> RenderedMessage:
    rows = []
    if payload.booking_id is not None:
        rows.append(("Booking ID", f"#{payload.booking_id}"))
    rows.append(("Start", _format_when(payload.start)))
    if payload.end is not None:
        rows.append(("End", _format_when(payload.end)))

    body = "\n".join(
        [
            "Hi there!",
            "",
            f'Your booking "{payload.title}" has been confirmed.',
            "",
            *(f"{label}: {value}" for label, value in rows),
            "",
            "Thank you for using our scheduling system!",
            SIGNATURE,
        ]
    )
    table = "".join(
        f'<tr><td style="padding:10px; font-weight:bold;">{escape(label)}</td>'
        f'<td style="padding:10px;">{escape(value)}</td></tr>'
        for label, value in rows
    )
    html = _layout(
        "Booking Confirmed",
        "#2563eb",
        f"<p>Hi there!</p><p>Your booking <strong>\"{escape(payload.title)}\"</strong> "
        "has been confirmed.</p>"
        f'<table style="width:100%; border-collapse:collapse; margin:16px 0;">{table}</table>',
    )

    return RenderedMessage(
        subject=f'Booking Confirmed: "{payload.title}"', body=body, html=html
    )


def render_booking_cancelled(payload: BookingCancelledPayload) -> RenderedMessage:
    reference = f" (ID: #{payload.booking_id})" if payload.booking_id is not None else ""

    body = "\n".join(
        [
            "Hi there,",
            "",
            f'Your booking "{payload.title}"{reference} has been cancelled.',
            "If this was a mistake, you can create a new booking at any time.",
            "",
            SIGNATURE,
        ]
    )
    html = _layout(
        "Booking Cancelled",
        "#dc2626",
        f"<p>Hi there,</p><p>Your booking <strong>\"{escape(payload.title)}\"</strong>"
        f"{escape(reference)} has been cancelled.</p>"
        "<p>If this was a mistake, you can create a new booking at any time.</p>",
    )

    return RenderedMessage(
        subject=f'Booking Cancelled: "{payload.title}"', body=body, html=html
    )


def render_welcome(payload: WelcomePayload) -> RenderedMessage:
    body = "\n".join(
        [
            f"Hi {payload.name}!",
            "",
            "Your account has been created successfully. You can now create "
            "bookings, join organizations, and more.",
            "",
            SIGNATURE,
        ]
    )
    html = _layout(
        "Welcome aboard!",
        "#16a34a",
        f"<p>Hi <strong>{escape(payload.name)}</strong>!</p>"
        "<p>Your account has been created successfully. You can now create "
        "bookings, join organizations, and more.</p>",
    )

    return RenderedMessage(
        subject=f"Welcome to Scheduling App, {payload.name}!", body=body, html=html
    )


def render_org_invite(payload: OrgInvitePayload) -> RenderedMessage:
    body = "\n".join(
        [
            "Hi there!",
            "",
            f'You\'ve been added as a {payload.role} to the organization "{payload.org_name}".',
            "",
            SIGNATURE,
        ]
    )
    html = _layout(
        "Organization Invite",
        "#7c3aed",
        f"<p>Hi there!</p><p>You've been added as a <strong>{escape(payload.role)}</strong> "
        f"to the organization <strong>\"{escape(payload.org_name)}\"</strong>.</p>",
    )

    return RenderedMessage(
        subject=f'You\'ve been added to "{payload.org_name}"', body=body, html=html
    )


TEMPLATES: dict[JobType, Callable[[Any], RenderedMessage]] = {
    JobType.BOOKING_CONFIRMATION: render_booking_confirmation,
    JobType.BOOKING_CANCELLED: render_booking_cancelled,
    JobType.WELCOME: render_welcome,
    JobType.ORG_INVITE: render_org_invite,
}

_missing = set(JobType) - set(TEMPLATES)
if _missing:
    raise RuntimeError(
        f"Job types without a template: {sorted(t.value for t in _missing)}"
    )


def parse_payload(job_type: JobType, payload: dict[str, Any]) -> JobPayload:
    """Validate a raw payload against the model for ``job_type``."""
    try:
        return PAYLOAD_MODELS[job_type].model_validate(payload)
    except PydanticValidationError as e:
        raise TemplateError(
            f"Invalid payload for {job_type.value}",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def resolve_job_type(job_type: str) -> JobType:
    try:
        return JobType(job_type)
    except ValueError:
        raise UnknownJobTypeError(
            f'Unknown job type: "{job_type}". '
            f"Available: {', '.join(t.value for t in JobType)}",
            {"job_type": job_type},
        ) from None


def render_message(job_type: str, payload: dict[str, Any]) -> RenderedMessage:
    """Render the message for a raw job type and payload."""
    resolved = resolve_job_type(job_type)
    return TEMPLATES[resolved](parse_payload(resolved, payload))
