import pytest

from notifier.v1.core.exceptions import TemplateError, UnknownJobTypeError
from notifier.v1.delivery.payloads import PAYLOAD_MODELS, JobType
from notifier.v1.delivery.templates import TEMPLATES, render_message
from tests.conftest import BOOKING_PAYLOAD


def test_every_job_type_has_template_and_payload_model():
    assert set(TEMPLATES) == set(JobType)
    assert set(PAYLOAD_MODELS) == set(JobType)


def test_booking_confirmation_render():
    message = render_message("BOOKING_CONFIRMATION", BOOKING_PAYLOAD)

    assert message.subject == 'Booking Confirmed: "Standup"'
    assert "Standup" in message.body
    assert "Booking ID: #42" in message.body
    assert "Start: 2026-03-02 09:00 UTC" in message.body
    assert "End: 2026-03-02 09:15 UTC" in message.body
    assert message.html is not None
    assert "Booking Confirmed" in message.html


def test_rendering_is_deterministic():
    first = render_message("BOOKING_CONFIRMATION", BOOKING_PAYLOAD)
    second = render_message("BOOKING_CONFIRMATION", dict(BOOKING_PAYLOAD))

    assert first == second


def test_snake_case_and_legacy_keys_render_identically():
    legacy = render_message("ORG_INVITE", {"orgName": "Acme", "role": "admin"})
    current = render_message("ORG_INVITE", {"org_name": "Acme", "role": "admin"})

    assert legacy == current
    assert legacy.subject == 'You\'ve been added to "Acme"'
    assert "as a admin" in legacy.body


def test_unknown_payload_fields_are_ignored():
    message = render_message("WELCOME", {"name": "Ada", "locale": "en-GB"})

    assert message.subject == "Welcome to Scheduling App, Ada!"


def test_booking_cancelled_without_booking_id():
    message = render_message("BOOKING_CANCELLED", {"title": "Retro"})

    assert message.subject == 'Booking Cancelled: "Retro"'
    assert "(ID:" not in message.body


def test_org_invite_default_role():
    message = render_message("ORG_INVITE", {"orgName": "Acme"})

    assert "as a member" in message.body


def test_html_is_escaped():
    message = render_message("WELCOME", {"name": "<script>alert(1)</script>"})

    assert "<script>" not in message.html
    assert "&lt;script&gt;" in message.html
    # Plain text keeps the raw value
    assert "<script>" in message.body


def test_unknown_job_type_raises():
    with pytest.raises(UnknownJobTypeError) as exc_info:
        render_message("SMS_REMINDER", {})

    assert exc_info.value.details == {"job_type": "SMS_REMINDER"}
    assert "WELCOME" in exc_info.value.message


@pytest.mark.parametrize(
    "job_type,payload",
    [
        ("BOOKING_CONFIRMATION", {"title": "Standup"}),
        ("BOOKING_CONFIRMATION", {"title": "Standup", "start": "not a date"}),
        ("BOOKING_CANCELLED", {"title": ""}),
        ("WELCOME", {}),
        ("ORG_INVITE", {"role": "admin"}),
    ],
)
def test_invalid_payload_raises_template_error(job_type, payload):
    with pytest.raises(TemplateError, match=f"Invalid payload for {job_type}"):
        render_message(job_type, payload)
