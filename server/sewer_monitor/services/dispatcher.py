"""
Notification dispatcher.

Each sweep picks the oldest undelivered active alerts of severity ``critical``
or ``high`` (at most one batch), resolves who must be told, sends the message
to every recipient and records one notification log row per attempt. An
alert is marked as sent once at least one recipient received it; otherwise it
stays pending and is picked up again by a later sweep.
"""
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.config import settings
from sewer_monitor.database import utcnow
from sewer_monitor.models import Alert, NotificationLog, Sensor, User
from sewer_monitor.services.whatsapp_notifier import DeliveryResult, WhatsAppNotifier

logger = logging.getLogger(__name__)

NOTIFIABLE_SEVERITIES = ("critical", "high")

RECIPIENT_ROLES = {
    "critical": ("admin", "operator"),
    "high": ("admin",),
}


@dataclass(frozen=True)
class Recipient:
    user_id: uuid.UUID
    phone_number: str


@dataclass
class DispatchReport:
    selected: int = 0
    sent: int = 0
    unroutable: int = 0
    deliveries: int = 0
    failures: int = 0


def recipient_roles(severity: str) -> tuple[str, ...]:
    return RECIPIENT_ROLES.get(severity, ("admin",))


async def resolve_recipients(db: AsyncSession, severity: str) -> list[Recipient]:
    """Active, opted-in users with a phone number whose role covers the severity."""
    result = await db.execute(
        select(User.id, User.phone_number)
        .where(
            User.role.in_(recipient_roles(severity)),
            User.is_active.is_(True),
            User.whatsapp_notifications.is_(True),
            User.phone_number.is_not(None),
            User.phone_number != "",
        )
        .order_by(User.username)
    )
    return [Recipient(user_id, phone) for user_id, phone in result.all()]


async def select_pending_alerts(db: AsyncSession, limit: int) -> list[tuple[Alert, str | None]]:
    result = await db.execute(
        select(Alert, Sensor.location_name)
        .outerjoin(Sensor, Alert.sensor_id == Sensor.sensor_id)
        .where(
            Alert.status == "active",
            Alert.whatsapp_sent.is_(False),
            Alert.severity.in_(NOTIFIABLE_SEVERITIES),
        )
        .order_by(Alert.created_at.asc(), Alert.id.asc())
        .limit(limit)
    )
    return [(alert, location) for alert, location in result.all()]


async def _deliver(notifier: WhatsAppNotifier, phone_number: str, text: str) -> DeliveryResult:
    try:
        return await notifier.send_message(phone_number, text)
    except Exception as exc:
        logger.exception("Unexpected error sending WhatsApp message to %s", phone_number)
        return DeliveryResult(False, str(exc) or exc.__class__.__name__)


async def dispatch_pending_alerts(
    db: AsyncSession,
    notifier: WhatsAppNotifier,
    batch_size: int | None = None,
) -> DispatchReport:
    """
    Run one notification sweep.

    Args:
        db: Async database session.
        notifier: Gateway used for delivery.
        batch_size: Maximum alerts handled in this sweep.

    Returns:
        DispatchReport with per-sweep counters.
    """
    report = DispatchReport()
    limit = batch_size or settings.NOTIFICATION_BATCH_SIZE

    # Snapshot everything needed up front: a rollback on one alert must not
    # expire the rows of the others.
    pending = [
        (alert.id, alert.severity, notifier.format_alert_message(alert, location))
        for alert, location in await select_pending_alerts(db, limit)
    ]
    report.selected = len(pending)
    if not pending:
        return report

    recipients_by_severity: dict[str, list[Recipient]] = {}

    for alert_id, severity, text in pending:
        try:
            if severity not in recipients_by_severity:
                recipients_by_severity[severity] = await resolve_recipients(db, severity)
            recipients = recipients_by_severity[severity]

            if not recipients:
                report.unroutable += 1
                logger.warning("No recipients for alert #%d (severity %s), will retry", alert_id, severity)
                continue

            delivered = 0
            for recipient in recipients:
                outcome = await _deliver(notifier, recipient.phone_number, text)
                report.deliveries += 1
                if outcome:
                    delivered += 1
                else:
                    report.failures += 1
                db.add(NotificationLog(
                    alert_id=alert_id,
                    user_id=recipient.user_id,
                    recipient=recipient.phone_number,
                    channel="whatsapp",
                    status="success" if outcome else "failed",
                    error_message=outcome.error,
                    created_at=utcnow(),
                ))

            if delivered:
                await db.execute(
                    update(Alert).where(Alert.id == alert_id).values(whatsapp_sent=True)
                )
                report.sent += 1
                logger.info("Alert #%d delivered to %d/%d recipients", alert_id, delivered, len(recipients))
            else:
                logger.warning("Alert #%d could not be delivered to any recipient", alert_id)

            await db.commit()
        except SQLAlchemyError:
            logger.exception("Failed to dispatch alert #%d", alert_id)
            await db.rollback()

    return report
