"""
Alert lifecycle manager.

Owns the alert state machine::

    active ──acknowledge──> acknowledged ──resolve──> resolved
       └──────────────────resolve──────────────────────┘

Transitions are conditional UPDATE statements so concurrent operator actions
on the same alert cannot overwrite each other's timestamps. Every change is
published to the dashboard fan-out.
"""
import logging
import uuid
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.database import utcnow
from sewer_monitor.models import Alert
from sewer_monitor.services.broadcaster import EventPublisher, NullPublisher

logger = logging.getLogger(__name__)


class AlertNotFoundError(LookupError):
    """The alert does not exist or is not in a state the transition accepts."""


class AlertStateError(RuntimeError):
    """The alert exists but its current state rejects the transition."""


def alert_summary(alert: Alert) -> dict[str, Any]:
    """Minimal alert representation carried by ``new_alert`` events."""
    return {
        "id": alert.id,
        "sensor_id": alert.sensor_id,
        "alert_type": alert.alert_type,
        "severity": alert.severity,
        "message": alert.message,
        "created_at": alert.created_at,
    }


class AlertLifecycleManager:
    """State transitions for alert records."""

    def __init__(self, publisher: EventPublisher | None = None):
        self.publisher = publisher or NullPublisher()

    async def _publish(self, event: str, data: dict[str, Any]) -> None:
        try:
            await self.publisher.publish(event, data)
        except Exception:
            logger.exception("Failed to publish %s event", event)

    async def get_alert(self, db: AsyncSession, alert_id: int) -> Alert | None:
        return await db.get(Alert, alert_id, populate_existing=True)

    async def create_alert(
        self,
        db: AsyncSession,
        *,
        sensor_id: str,
        alert_type: str,
        severity: str,
        message: str,
        alert_data: dict | None = None,
    ) -> Alert:
        """Persist a new alert in the ``active`` state and announce it."""
        alert = Alert(
            sensor_id=sensor_id,
            alert_type=alert_type,
            severity=severity,
            message=message,
            alert_data=alert_data or {},
            status="active",
            whatsapp_sent=False,
            created_at=utcnow(),
        )
        db.add(alert)
        await db.commit()

        logger.info("New alert #%d [%s/%s] for sensor %s", alert.id, alert_type, severity, sensor_id)
        await self._publish("new_alert", alert_summary(alert))
        return alert

    async def acknowledge(
        self,
        db: AsyncSession,
        alert_id: int,
        user_id: uuid.UUID | None = None,
    ) -> Alert:
        """
        Move an ``active`` alert to ``acknowledged``.

        Raises:
            AlertNotFoundError: The alert is missing or no longer active.
        """
        now = utcnow()
        result = await db.execute(
            update(Alert)
            .where(Alert.id == alert_id, Alert.status == "active")
            .values(status="acknowledged", acknowledged_at=now, acknowledged_by=user_id)
        )
        if result.rowcount == 0:
            raise AlertNotFoundError(f"Alert {alert_id} not found or already processed")
        await db.commit()

        logger.info("Alert #%d acknowledged", alert_id)
        await self._publish("alert_acknowledged", {"id": alert_id, "acknowledged_at": now})
        return await self.get_alert(db, alert_id)

    async def resolve(
        self,
        db: AsyncSession,
        alert_id: int,
        user_id: uuid.UUID | None = None,
        reason: str | None = None,
    ) -> Alert:
        """
        Move an ``active`` or ``acknowledged`` alert to ``resolved``.

        The original ``resolved_at`` of an already resolved alert is kept.

        Raises:
            AlertNotFoundError: The alert does not exist.
            AlertStateError: The alert is already resolved.
        """
        now = utcnow()
        result = await db.execute(
            update(Alert)
            .where(Alert.id == alert_id, Alert.status.in_(("active", "acknowledged")))
            .values(status="resolved", resolved_at=now, resolved_by=user_id)
        )
        if result.rowcount == 0:
            if await self.get_alert(db, alert_id) is None:
                raise AlertNotFoundError(f"Alert {alert_id} not found")
            raise AlertStateError(f"Alert {alert_id} is already resolved")
        await db.commit()

        logger.info("Alert #%d resolved%s", alert_id, f": {reason}" if reason else "")
        payload: dict[str, Any] = {"id": alert_id, "resolved_at": now}
        if reason:
            payload["reason"] = reason
        await self._publish("alert_resolved", payload)
        return await self.get_alert(db, alert_id)
