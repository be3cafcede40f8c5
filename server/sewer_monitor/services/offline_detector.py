"""Detection of active sensors that stopped reporting."""
import logging
from datetime import datetime, timedelta

from sqlalchemy import select, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.config import settings
from sewer_monitor.database import ensure_aware, utcnow
from sewer_monitor.i18n.translations import get_translator
from sewer_monitor.models import Alert, Sensor, SensorReading
from sewer_monitor.services.lifecycle import AlertLifecycleManager

logger = logging.getLogger(__name__)


async def find_offline_sensors(
    db: AsyncSession,
    staleness: timedelta,
) -> list[tuple[str, str, datetime | None]]:
    """
    Active sensors whose latest reading is older than ``staleness`` or missing.

    Returns ``(sensor_id, location_name, last_reading)`` tuples.
    """
    cutoff = utcnow() - staleness
    latest = (
        select(
            SensorReading.sensor_id.label("sensor_id"),
            func.max(SensorReading.timestamp).label("last_reading"),
        )
        .group_by(SensorReading.sensor_id)
        .subquery()
    )
    result = await db.execute(
        select(Sensor.sensor_id, Sensor.location_name, latest.c.last_reading)
        .outerjoin(latest, latest.c.sensor_id == Sensor.sensor_id)
        .where(
            Sensor.status == "active",
            or_(latest.c.last_reading.is_(None), latest.c.last_reading < cutoff),
        )
        .order_by(Sensor.sensor_id)
    )
    return [(sensor_id, location, ensure_aware(last)) for sensor_id, location, last in result.all()]


async def _has_active_offline_alert(db: AsyncSession, sensor_id: str) -> bool:
    result = await db.execute(
        select(Alert.id)
        .where(
            Alert.sensor_id == sensor_id,
            Alert.alert_type == "sensor_offline",
            Alert.status == "active",
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def check_offline_sensors(
    db: AsyncSession,
    lifecycle: AlertLifecycleManager,
    staleness: timedelta | None = None,
) -> list[Alert]:
    """
    Raise a ``sensor_offline`` alert for each silent active sensor.

    A sensor that already has an active offline alert is skipped. Offline
    alerts are never resolved here; an operator resolves them.

    Returns:
        List of newly created alerts.
    """
    staleness = staleness or timedelta(minutes=settings.SENSOR_OFFLINE_MINUTES)
    _ = get_translator(settings.ALERT_LANGUAGE)
    created: list[Alert] = []

    for sensor_id, location_name, last_reading in await find_offline_sensors(db, staleness):
        try:
            if await _has_active_offline_alert(db, sensor_id):
                continue

            alert = await lifecycle.create_alert(
                db,
                sensor_id=sensor_id,
                alert_type="sensor_offline",
                severity="high",
                message=_("alert.sensor_offline", sensor_id=sensor_id, location=location_name),
                alert_data={
                    "last_reading": last_reading.isoformat() if last_reading else None,
                    "offline_since": utcnow().isoformat(),
                },
            )
            created.append(alert)
            logger.warning("Sensor %s detected offline (last reading: %s)", sensor_id, last_reading)
        except SQLAlchemyError:
            logger.exception("Offline check failed for sensor %s", sensor_id)
            await db.rollback()

    return created
