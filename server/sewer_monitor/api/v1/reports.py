import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.database import utcnow
from sewer_monitor.dependencies import get_db, get_current_user
from sewer_monitor.models import Alert, Sensor, SensorReading, User
from sewer_monitor.models.alert import ALERT_SEVERITIES, ALERT_STATUSES
from sewer_monitor.models.sensor import ALERT_LEVELS, SENSOR_STATUSES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reports"])

TOP_SENSORS_LIMIT = 5


def _counts(rows, keys) -> dict[str, int]:
    found = dict(rows)
    return {key: found.get(key, 0) for key in keys}


@router.get("/summary")
async def summary_report(
    days: int = Query(7, ge=1, le=365),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Network summary over the last ``days`` days:
    sensors by status, readings by alert level, alerts by status and severity,
    and the sensors that raised the most alerts.
    """
    generated_at = utcnow()
    since = generated_at - timedelta(days=days)

    sensor_rows = (
        await db.execute(select(Sensor.status, func.count(Sensor.id)).group_by(Sensor.status))
    ).all()
    sensors = _counts(sensor_rows, SENSOR_STATUSES)

    reading_rows = (
        await db.execute(
            select(SensorReading.alert_level, func.count(SensorReading.id))
            .where(SensorReading.timestamp >= since)
            .group_by(SensorReading.alert_level)
        )
    ).all()
    readings = _counts(reading_rows, ALERT_LEVELS)

    status_rows = (
        await db.execute(
            select(Alert.status, func.count(Alert.id))
            .where(Alert.created_at >= since)
            .group_by(Alert.status)
        )
    ).all()
    severity_rows = (
        await db.execute(
            select(Alert.severity, func.count(Alert.id))
            .where(Alert.created_at >= since)
            .group_by(Alert.severity)
        )
    ).all()
    alerts_by_status = _counts(status_rows, ALERT_STATUSES)

    alert_count = func.count(Alert.id).label("alert_count")
    top_result = await db.execute(
        select(Sensor.sensor_id, Sensor.location_name, alert_count)
        .join(Alert, Alert.sensor_id == Sensor.sensor_id)
        .where(Alert.created_at >= since)
        .group_by(Sensor.sensor_id, Sensor.location_name)
        .order_by(alert_count.desc(), Sensor.sensor_id)
        .limit(TOP_SENSORS_LIMIT)
    )

    return {
        "period_days": days,
        "generated_at": generated_at,
        "sensors": {"total": sum(sensors.values()), **sensors},
        "readings": {"total": sum(readings.values()), **readings},
        "alerts": {
            "total": sum(alerts_by_status.values()),
            "by_status": alerts_by_status,
            "by_severity": _counts(severity_rows, ALERT_SEVERITIES),
        },
        "top_alert_sensors": [
            {"sensor_id": sensor_id, "location_name": location, "alert_count": count}
            for sensor_id, location, count in top_result.all()
        ],
    }
