"""Customer notification dispatch: outbox queuing and provider delivery over HTTP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models import NotificationOutbox

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    channel: str
    recipient: str
    ok: bool
    error: Optional[str] = None


class NotificationDispatcher(Protocol):
    def send_email(self, to: str, payload: dict[str, Any]) -> DeliveryResult: ...

    def send_sms(self, to: str, payload: dict[str, Any]) -> DeliveryResult: ...


class OutboxNotificationDispatcher:
    """Queues one outbox row per channel; the Celery worker performs delivery."""

    def __init__(self, db: Session, *, org_id=None, health_check_id=None):
        self.db = db
        self.org_id = org_id
        self.health_check_id = health_check_id

    def _enqueue(self, channel: str, to: str, payload: dict[str, Any]) -> DeliveryResult:
        try:
            self.db.add(
                NotificationOutbox(
                    org_id=self.org_id,
                    health_check_id=self.health_check_id,
                    channel=channel,
                    recipient=to,
                    payload=payload,
                    status="pending",
                    attempts=0,
                )
            )
            self.db.flush()
        except SQLAlchemyError as exc:
            logger.exception("Failed to queue %s notification for %s", channel, to)
            return DeliveryResult(channel=channel, recipient=to, ok=False, error=f"QUEUE_FAILED: {exc}")
        return DeliveryResult(channel=channel, recipient=to, ok=True)

    def send_email(self, to: str, payload: dict[str, Any]) -> DeliveryResult:
        return self._enqueue("email", to, payload)

    def send_sms(self, to: str, payload: dict[str, Any]) -> DeliveryResult:
        return self._enqueue("sms", to, payload)


def build_public_link(token: str) -> str:
    return f"{settings.PUBLIC_APP_URL.rstrip('/')}/view/{token}"


def build_publish_payload(
    *,
    health_check,
    customer,
    token: str,
    expires_at,
    custom_message: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "healthCheckId": str(health_check.id),
        "customerName": f"{customer.first_name} {customer.last_name}".strip(),
        "vehicleRegistration": health_check.vehicle_registration,
        "link": build_public_link(token),
        "expiresAt": expires_at.isoformat() if expires_at else None,
        "message": custom_message,
    }


def _post(url: Optional[str], api_key: Optional[str], body: dict[str, Any]) -> tuple[bool, str | None]:
    if not url:
        return False, "PROVIDER_NOT_CONFIGURED"

    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
    try:
        response = requests.post(url, json=body, headers=headers, timeout=10)
    except requests.RequestException as exc:
        return False, f"EXCEPTION: {exc}"

    if 200 <= response.status_code < 300:
        return True, None
    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After", "60")
        return False, f"RATE_LIMIT:{retry_after}"
    if response.status_code in (400, 422):
        return False, f"REJECTED: {response.text[:200]}"
    return False, f"HTTP_{response.status_code}: {response.text[:200]}"


def deliver_email(recipient: str, payload: dict[str, Any]) -> tuple[bool, str | None]:
    """Send one email through the configured provider."""
    return _post(
        settings.EMAIL_API_URL,
        settings.EMAIL_API_KEY,
        {
            "from": settings.EMAIL_FROM,
            "to": recipient,
            "subject": "Your vehicle health check",
            "data": payload,
        },
    )


def deliver_sms(recipient: str, payload: dict[str, Any]) -> tuple[bool, str | None]:
    """Send one SMS through the configured provider."""
    text = payload.get("message") or "Your vehicle health check is ready"
    return _post(
        settings.SMS_API_URL,
        settings.SMS_API_KEY,
        {
            "from": settings.SMS_FROM,
            "to": recipient,
            "body": f"{text} {payload.get('link', '')}".strip(),
        },
    )
