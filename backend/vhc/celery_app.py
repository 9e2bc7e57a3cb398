"""
Celery worker: customer notification outbox and link expiry.
Outbox rows are claimed with SELECT FOR UPDATE SKIP LOCKED.
"""
from celery import Celery
from sqlalchemy import text
from datetime import timedelta
import logging
from .config import settings
from .database import SessionLocal
from .models import HealthCheck, NotificationOutbox
from .services.notifications import deliver_email, deliver_sms
from .services.workflow_status import now_utc
from .use_cases.health_check_transitions import expire_health_check

logger = logging.getLogger(__name__)

celery_app = Celery(
    "vhc_workflow",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)

_DELIVERERS = {
    "email": deliver_email,
    "sms": deliver_sms,
}


def apply_delivery_result(notification: NotificationOutbox, success: bool, error: str | None, *, at) -> None:
    """Update one outbox row after a delivery attempt."""
    if success:
        notification.status = 'sent'
        notification.sent_at = at
        notification.last_error = None
        return

    notification.attempts = (notification.attempts or 0) + 1
    notification.last_error = error

    if error and error.startswith("RATE_LIMIT:"):
        try:
            retry_after = int(error.split(":", 1)[1])
        except ValueError:
            retry_after = 60
        notification.next_retry_at = at + timedelta(seconds=retry_after)
        logger.warning("Rate limited for %ss: %s", retry_after, notification.id)
    elif error and (error.startswith("REJECTED") or error == "PROVIDER_NOT_CONFIGURED"):
        notification.status = 'failed'
        notification.failed_at = at
        logger.error("Delivery rejected for %s: %s", notification.id, error)
    elif notification.attempts >= settings.NOTIFICATION_MAX_ATTEMPTS:
        notification.status = 'failed'
        notification.failed_at = at
        logger.error("Failed after %s attempts: %s, error: %s", notification.attempts, notification.id, error)
    else:
        backoff_seconds = 2 ** notification.attempts * 60
        notification.next_retry_at = at + timedelta(seconds=backoff_seconds)
        logger.warning(
            "Retry %s/%s in %ss: %s",
            notification.attempts, settings.NOTIFICATION_MAX_ATTEMPTS, backoff_seconds, notification.id,
        )


@celery_app.task(name="process_notification_outbox")
def process_notification_outbox(batch_size: int = 100):
    """Deliver pending customer notifications; concurrent workers skip each other's rows."""
    db = SessionLocal()
    processed_count = 0
    notification_ids = []

    try:
        query = text("""
            SELECT id
            FROM notification_outbox
            WHERE status = 'pending'
              AND (next_retry_at IS NULL OR next_retry_at <= NOW())
            ORDER BY created_at
            LIMIT :batch_size
            FOR UPDATE SKIP LOCKED
        """)

        result = db.execute(query, {"batch_size": batch_size})
        notification_ids = [row[0] for row in result.fetchall()]
        logger.info("Locked %s notifications for processing", len(notification_ids))

        for notif_id in notification_ids:
            notification = db.query(NotificationOutbox).filter(
                NotificationOutbox.id == notif_id
            ).first()
            if not notification:
                continue

            deliver = _DELIVERERS.get(notification.channel)
            if deliver is None:
                apply_delivery_result(notification, False, "REJECTED: unknown channel", at=now_utc())
                continue

            success, error = deliver(notification.recipient, notification.payload or {})
            apply_delivery_result(notification, success, error, at=now_utc())
            if success:
                processed_count += 1
                logger.info("Sent %s notification %s", notification.channel, notif_id)

        db.commit()
        logger.info("Processed %s/%s notifications", processed_count, len(notification_ids))

    except Exception as e:
        db.rollback()
        logger.error("Error processing outbox: %s", e, exc_info=True)
        raise

    finally:
        db.close()

    return {"processed": processed_count, "total_locked": len(notification_ids)}


@celery_app.task(name="expire_public_links")
def expire_public_links(batch_size: int = 200):
    """Move health checks whose customer link has lapsed to expired."""
    db = SessionLocal()
    expired_count = 0

    try:
        at = now_utc()
        candidates = (
            db.query(HealthCheck)
            .filter(
                HealthCheck.status.in_(["sent", "opened", "partial_response"]),
                HealthCheck.token_expires_at != None,
                HealthCheck.token_expires_at <= at,
                HealthCheck.deleted_at == None,
            )
            .limit(batch_size)
            .with_for_update(skip_locked=True)
            .all()
        )
        for health_check in candidates:
            if expire_health_check(db, health_check=health_check, at=at):
                expired_count += 1

        db.commit()
        logger.info("Expired %s health check links", expired_count)

    except Exception as e:
        db.rollback()
        logger.error("Error expiring public links: %s", e, exc_info=True)
        raise

    finally:
        db.close()

    return {"expired": expired_count}


celery_app.conf.beat_schedule = {
    'process-outbox-every-30s': {
        'task': 'process_notification_outbox',
        'schedule': 30.0,
    },
    'expire-links-every-5m': {
        'task': 'expire_public_links',
        'schedule': 300.0,
    },
}
