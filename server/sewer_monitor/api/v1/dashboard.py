import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.config import settings
from sewer_monitor.database import ensure_aware, utcnow
from sewer_monitor.dependencies import get_connection_manager, get_db, get_current_user
from sewer_monitor.models import Alert, Sensor, SensorReading, User
from sewer_monitor.models.alert import ALERT_SEVERITIES
from sewer_monitor.services.alert_engine import ALERT_TYPE_BY_PARAMETER
from sewer_monitor.services.broadcaster import ConnectionManager
from sewer_monitor.services.offline_detector import find_offline_sensors

logger = logging.getLogger(__name__)

router = APIRouter(tags=["dashboard"])

SEVERITY_RANK = {severity: rank for rank, severity in enumerate(ALERT_SEVERITIES, start=1)}
TIMELINE_PARAMETERS = tuple(ALERT_TYPE_BY_PARAMETER)


@router.get("/overview")
async def dashboard_overview(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Get summary statistics for the dashboard:
    sensor counts by status, active alerts by severity and reading volume.
    """
    # Sensor counts by status
    sensor_result = await db.execute(
        select(Sensor.status, func.count(Sensor.id)).group_by(Sensor.status)
    )
    sensor_counts = dict(sensor_result.all())

    # Active alerts by severity
    alert_result = await db.execute(
        select(Alert.severity, func.count(Alert.id))
        .where(Alert.status == "active")
        .group_by(Alert.severity)
    )
    alert_counts = dict(alert_result.all())

    since = utcnow() - timedelta(hours=24)
    reading_result = await db.execute(
        select(
            func.count(SensorReading.id),
            func.count(func.distinct(SensorReading.sensor_id)),
        ).where(SensorReading.timestamp >= since)
    )
    readings_24h, reporting_sensors = reading_result.one()

    # Readings by alert level in the same window
    level_result = await db.execute(
        select(SensorReading.alert_level, func.count(SensorReading.id))
        .where(SensorReading.timestamp >= since)
        .group_by(SensorReading.alert_level)
    )

    return {
        "sensors": {
            "total": sum(sensor_counts.values()),
            "by_status": sensor_counts,
            "reporting_24h": reporting_sensors or 0,
        },
        "alerts": {
            "active": sum(alert_counts.values()),
            "by_severity": alert_counts,
        },
        "readings": {
            "last_24h": readings_24h or 0,
            "by_level": dict(level_result.all()),
        },
    }


@router.get("/recent-alerts")
async def recent_alerts(
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Latest alerts of any status, with sensor location."""
    result = await db.execute(
        select(Alert, Sensor.location_name)
        .outerjoin(Sensor, Sensor.sensor_id == Alert.sensor_id)
        .order_by(Alert.created_at.desc(), Alert.id.desc())
        .limit(limit)
    )

    return [
        {
            "id": alert.id,
            "sensor_id": alert.sensor_id,
            "location_name": location_name,
            "alert_type": alert.alert_type,
            "severity": alert.severity,
            "status": alert.status,
            "message": alert.message,
            "created_at": ensure_aware(alert.created_at),
        }
        for alert, location_name in result.all()
    ]


@router.get("/map-data")
async def map_data(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Every sensor with coordinates, latest reading and active alert summary."""
    sensors = (await db.execute(select(Sensor).order_by(Sensor.sensor_id))).scalars().all()

    latest_ts = (
        select(
            SensorReading.sensor_id.label("sensor_id"),
            func.max(SensorReading.timestamp).label("ts"),
        )
        .group_by(SensorReading.sensor_id)
        .subquery()
    )
    latest_result = await db.execute(
        select(SensorReading).join(
            latest_ts,
            (SensorReading.sensor_id == latest_ts.c.sensor_id)
            & (SensorReading.timestamp == latest_ts.c.ts),
        )
    )
    latest = {r.sensor_id: r for r in latest_result.scalars().all()}

    alert_result = await db.execute(
        select(Alert.sensor_id, Alert.severity, func.count(Alert.id))
        .where(Alert.status == "active")
        .group_by(Alert.sensor_id, Alert.severity)
    )
    active: dict[str, dict[str, int]] = defaultdict(dict)
    for sensor_id, severity, count in alert_result.all():
        active[sensor_id][severity] = count

    items = []
    for sensor in sensors:
        reading = latest.get(sensor.sensor_id)
        severities = active.get(sensor.sensor_id, {})
        max_severity = max(severities, key=lambda s: SEVERITY_RANK.get(s, 0), default=None)
        items.append({
            "sensor_id": sensor.sensor_id,
            "location_name": sensor.location_name,
            "latitude": sensor.latitude,
            "longitude": sensor.longitude,
            "sensor_type": sensor.sensor_type,
            "status": sensor.status,
            "active_alerts": sum(severities.values()),
            "max_severity": max_severity,
            "max_severity_level": SEVERITY_RANK.get(max_severity, 0),
            "last_reading": ensure_aware(reading.timestamp) if reading else None,
            "latest_reading_data": reading.reading_data if reading else None,
            "latest_alert_level": reading.alert_level if reading else None,
        })
    return items


@router.get("/charts/readings-timeline")
async def readings_timeline(
    hours: int = Query(24, ge=1, le=24 * 30),
    sensor_id: str | None = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Hourly buckets of readings, oldest first.

    Each bucket carries the reading count per alert level and the average of
    every gas and water-level parameter reported in that hour.
    """
    query = select(SensorReading).where(SensorReading.timestamp >= utcnow() - timedelta(hours=hours))
    if sensor_id:
        query = query.where(SensorReading.sensor_id == sensor_id)
    result = await db.execute(query.order_by(SensorReading.timestamp))

    buckets: dict[datetime, dict] = {}
    for reading in result.scalars().all():
        hour = ensure_aware(reading.timestamp).replace(minute=0, second=0, microsecond=0)
        bucket = buckets.setdefault(hour, {"count": 0, "levels": defaultdict(int), "values": defaultdict(list)})
        bucket["count"] += 1
        bucket["levels"][reading.alert_level] += 1
        for name in TIMELINE_PARAMETERS:
            value = (reading.reading_data or {}).get(name)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                bucket["values"][name].append(value)

    return [
        {
            "hour": hour,
            "count": bucket["count"],
            "by_level": dict(bucket["levels"]),
            "averages": {
                name: round(sum(values) / len(values), 2)
                for name, values in bucket["values"].items()
            },
        }
        for hour, bucket in sorted(buckets.items())
    ]


@router.get("/charts/alert-distribution")
async def alert_distribution(
    days: int = Query(7, ge=1, le=365),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Alert counts per local day, type and severity, newest day first."""
    result = await db.execute(
        select(Alert.alert_type, Alert.severity, Alert.created_at)
        .where(Alert.created_at >= utcnow() - timedelta(days=days))
    )

    counts: dict[tuple, int] = defaultdict(int)
    for alert_type, severity, created_at in result.all():
        day = ensure_aware(created_at).astimezone(settings.local_tz).date()
        counts[(day, alert_type, severity)] += 1

    rows = [
        {"date": day.isoformat(), "alert_type": alert_type, "severity": severity, "count": count}
        for (day, alert_type, severity), count in counts.items()
    ]
    rows.sort(key=lambda r: (r["date"], r["count"]), reverse=True)
    return rows


@router.get("/system-health")
async def system_health(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    connections: ConnectionManager = Depends(get_connection_manager),
):
    """Silent sensors, today's reading volume and a healthy/warning verdict."""
    offline = await find_offline_sensors(db, timedelta(minutes=settings.SENSOR_OFFLINE_MINUTES))

    local_now = utcnow().astimezone(settings.local_tz)
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0).astimezone(timezone.utc)
    reading_result = await db.execute(
        select(
            func.count(SensorReading.id),
            func.count(func.distinct(SensorReading.sensor_id)),
        ).where(SensorReading.timestamp >= midnight)
    )
    readings_today, reporting_today = reading_result.one()

    return {
        "system_status": "healthy" if not offline else "warning",
        "offline_sensors": [
            {"sensor_id": sensor_id, "location_name": location, "last_reading": last}
            for sensor_id, location, last in offline
        ],
        "performance": {
            "total_readings_today": readings_today or 0,
            "active_sensors_today": reporting_today or 0,
        },
        "dashboard_clients": connections.connection_count,
    }
