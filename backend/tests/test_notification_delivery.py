from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import requests

from vhc import celery_app
from vhc.models import NotificationOutbox
from vhc.services import notifications
from vhc.services.notifications import OutboxNotificationDispatcher


AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _notification(**fields):
    values = dict(id="n-1", status="pending", attempts=0, last_error=None, next_retry_at=None, sent_at=None, failed_at=None)
    values.update(fields)
    return SimpleNamespace(**values)


def test_successful_delivery_marks_row_sent() -> None:
    notification = _notification(last_error="HTTP_500: boom")

    celery_app.apply_delivery_result(notification, True, None, at=AT)

    assert notification.status == "sent"
    assert notification.sent_at == AT
    assert notification.last_error is None


def test_transient_failure_backs_off_exponentially() -> None:
    notification = _notification(attempts=1)

    celery_app.apply_delivery_result(notification, False, "HTTP_503: unavailable", at=AT)

    assert notification.status == "pending"
    assert notification.attempts == 2
    assert notification.next_retry_at == AT + timedelta(seconds=240)


def test_rate_limit_honours_retry_after() -> None:
    notification = _notification()

    celery_app.apply_delivery_result(notification, False, "RATE_LIMIT:15", at=AT)

    assert notification.next_retry_at == AT + timedelta(seconds=15)
    assert notification.status == "pending"


@pytest.mark.parametrize("error", ["REJECTED: bad number", "PROVIDER_NOT_CONFIGURED"])
def test_permanent_failures_are_not_retried(error) -> None:
    notification = _notification()

    celery_app.apply_delivery_result(notification, False, error, at=AT)

    assert notification.status == "failed"
    assert notification.failed_at == AT


def test_gives_up_after_max_attempts(monkeypatch) -> None:
    monkeypatch.setattr(celery_app.settings, "NOTIFICATION_MAX_ATTEMPTS", 2)
    notification = _notification(attempts=1)

    celery_app.apply_delivery_result(notification, False, "EXCEPTION: timeout", at=AT)

    assert notification.status == "failed"


def test_outbox_dispatcher_queues_one_row_per_channel(db) -> None:
    dispatcher = OutboxNotificationDispatcher(db, org_id="org", health_check_id="hc")

    email = dispatcher.send_email("jo@example.com", {"link": "x"})
    sms = dispatcher.send_sms("07700900123", {"link": "x"})

    rows = db.added_of(NotificationOutbox)
    assert [(r.channel, r.recipient, r.status) for r in rows] == [
        ("email", "jo@example.com", "pending"),
        ("sms", "07700900123", "pending"),
    ]
    assert email.ok and sms.ok
    assert db.flush_calls == 2


def test_sms_delivery_posts_link(monkeypatch) -> None:
    calls = []

    def fake_post(url, json, headers, timeout):
        calls.append((url, json, headers, timeout))
        return SimpleNamespace(status_code=202, text="", headers={})

    monkeypatch.setattr(notifications.settings, "SMS_API_URL", "https://sms.example/send")
    monkeypatch.setattr(notifications.settings, "SMS_API_KEY", "secret")
    monkeypatch.setattr(notifications.requests, "post", fake_post)

    ok, error = notifications.deliver_sms("07700900123", {"link": "https://vhc.example/view/t", "message": None})

    assert (ok, error) == (True, None)
    url, body, headers, timeout = calls[0]
    assert url == "https://sms.example/send"
    assert body["body"].endswith("https://vhc.example/view/t")
    assert headers == {"Authorization": "Bearer secret"}
    assert timeout == 10


@pytest.mark.parametrize(
    ("status_code", "headers", "expected"),
    [
        (429, {"Retry-After": "30"}, "RATE_LIMIT:30"),
        (422, {}, "REJECTED: nope"),
        (500, {}, "HTTP_500: nope"),
    ],
)
def test_provider_errors_are_classified(monkeypatch, status_code, headers, expected) -> None:
    monkeypatch.setattr(notifications.settings, "EMAIL_API_URL", "https://mail.example/send")
    monkeypatch.setattr(
        notifications.requests,
        "post",
        lambda *a, **kw: SimpleNamespace(status_code=status_code, text="nope", headers=headers),
    )

    assert notifications.deliver_email("jo@example.com", {}) == (False, expected)


def test_network_errors_are_reported(monkeypatch) -> None:
    def boom(*_args, **_kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(notifications.settings, "EMAIL_API_URL", "https://mail.example/send")
    monkeypatch.setattr(notifications.requests, "post", boom)

    ok, error = notifications.deliver_email("jo@example.com", {})

    assert ok is False
    assert error.startswith("EXCEPTION:")


def test_unconfigured_provider_is_permanent(monkeypatch) -> None:
    monkeypatch.setattr(notifications.settings, "EMAIL_API_URL", None)

    assert notifications.deliver_email("jo@example.com", {}) == (False, "PROVIDER_NOT_CONFIGURED")
