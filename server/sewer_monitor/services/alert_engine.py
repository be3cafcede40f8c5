"""
Alert creation from triggered threshold events.

Maps each triggered event to an alert category and severity, suppresses it
when an active alert of the same category was raised for the sensor within
the suppression window, and otherwise creates a new alert through the
lifecycle manager.

The suppression check is a read followed by a write. Two readings for the
same sensor processed at the same moment can both pass the check and raise
two alerts; this is accepted in favour of never blocking ingestion.
"""
import logging
from datetime import timedelta
from typing import Any, Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.config import settings
from sewer_monitor.database import utcnow
from sewer_monitor.i18n.translations import get_translator
from sewer_monitor.models import Alert
from sewer_monitor.services.evaluator import TriggeredEvent
from sewer_monitor.services.lifecycle import AlertLifecycleManager

logger = logging.getLogger(__name__)

ALERT_TYPE_BY_PARAMETER = {
    "water_level": "flood_risk",
    "gas_co": "toxic_gas",
    "gas_h2s": "toxic_gas",
    "gas_ch4": "toxic_gas",
}
DEFAULT_ALERT_TYPE = "maintenance_required"

SEVERITY_BY_LEVEL = {
    "critical": "critical",
    "warning": "medium",
}


def alert_type_for(parameter: str) -> str:
    return ALERT_TYPE_BY_PARAMETER.get(parameter, DEFAULT_ALERT_TYPE)


def severity_for(level: str) -> str:
    return SEVERITY_BY_LEVEL.get(level, "medium")


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_alert_message(sensor_id: str, event: TriggeredEvent, language: str | None = None) -> str:
    """
    Build the human readable alert text, e.g.
    ``Critical water level detected at sensor S1: 95 (threshold: 90)``.
    """
    _ = get_translator(language or settings.ALERT_LANGUAGE)
    level = _(f"alert.level.{event.level}")
    parameter = _(f"param.{event.parameter}", default=event.parameter)
    return _(
        "alert.threshold_message",
        level=level[:1].upper() + level[1:],
        parameter=parameter,
        sensor_id=sensor_id,
        value=_format_number(event.value),
        threshold=_format_number(event.threshold),
    )


async def find_recent_active_alert(
    db: AsyncSession,
    sensor_id: str,
    alert_type: str,
    window: timedelta,
) -> Alert | None:
    """Return an active alert of this category raised inside the window, if any."""
    cutoff = utcnow() - window
    result = await db.execute(
        select(Alert)
        .where(
            Alert.sensor_id == sensor_id,
            Alert.alert_type == alert_type,
            Alert.status == "active",
            Alert.created_at >= cutoff,
        )
        .order_by(Alert.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_alerts_from_events(
    db: AsyncSession,
    sensor_id: str,
    events: Iterable[TriggeredEvent],
    reading: Mapping[str, Any],
    lifecycle: AlertLifecycleManager,
    suppression_window: timedelta | None = None,
) -> list[Alert]:
    """
    Create alerts for triggered events, folding duplicates.

    Every event is handled on its own: a storage error on one event is
    logged and the remaining events are still processed.

    Args:
        db: Async database session.
        sensor_id: Sensor the reading belongs to.
        events: Events produced by the reading evaluator.
        reading: The full reading, stored as evidence.
        lifecycle: Lifecycle manager used to create and announce alerts.
        suppression_window: Override of the configured suppression window.

    Returns:
        List of newly created alerts.
    """
    window = suppression_window or timedelta(minutes=settings.ALERT_SUPPRESSION_MINUTES)
    created: list[Alert] = []
    rolled_back = False

    for event in events:
        alert_type = alert_type_for(event.parameter)
        try:
            existing = await find_recent_active_alert(db, sensor_id, alert_type, window)
            if existing is not None:
                logger.debug(
                    "Suppressed %s alert for sensor %s, covered by alert #%d",
                    alert_type,
                    sensor_id,
                    existing.id,
                )
                continue

            alert = await lifecycle.create_alert(
                db,
                sensor_id=sensor_id,
                alert_type=alert_type,
                severity=severity_for(event.level),
                message=format_alert_message(sensor_id, event),
                alert_data={
                    "parameter": event.parameter,
                    "value": event.value,
                    "threshold": event.threshold,
                    "reading_data": dict(reading),
                },
            )
            created.append(alert)
        except SQLAlchemyError:
            logger.exception(
                "Failed to create %s alert for sensor %s (parameter %s)",
                alert_type,
                sensor_id,
                event.parameter,
            )
            await db.rollback()
            rolled_back = True

    # a rollback expires the alerts committed before it
    if rolled_back:
        for alert in created:
            await db.refresh(alert)

    return created
