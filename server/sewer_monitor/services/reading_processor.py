"""
Sensor reading ingestion workflow.

1. Classify the reading against the sensor's thresholds.
2. Persist the reading with its alert level and commit it.
3. Create alerts for the triggered thresholds (failures are logged only).
4. Publish a ``sensor_reading`` event to the dashboard.

The reading is committed before any alerting work so that a sensor always
gets its reading stored, whatever happens downstream.
"""
import logging
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.database import utcnow
from sewer_monitor.models import Alert, SensorReading
from sewer_monitor.services import alert_engine
from sewer_monitor.services.evaluator import ReadingEvaluation, evaluate_reading
from sewer_monitor.services.lifecycle import AlertLifecycleManager

logger = logging.getLogger(__name__)


async def process_reading(
    db: AsyncSession,
    sensor_id: str,
    reading_data: Mapping[str, Any],
    lifecycle: AlertLifecycleManager,
) -> tuple[dict[str, Any], ReadingEvaluation, list[Alert]]:
    """
    Ingest one reading.

    Args:
        db: Async database session.
        sensor_id: Identifier of an existing sensor.
        reading_data: Parameter name -> measured value.
        lifecycle: Lifecycle manager (also carries the fan-out publisher).

    Returns:
        Tuple of (stored reading as a dict, evaluation, newly created alerts).
    """
    evaluation = await evaluate_reading(db, sensor_id, reading_data)

    reading = SensorReading(
        sensor_id=sensor_id,
        reading_data=dict(reading_data),
        alert_level=evaluation.level,
        timestamp=utcnow(),
    )
    db.add(reading)
    await db.commit()

    # alert creation may roll the session back, which expires the ORM row
    stored = {
        "id": reading.id,
        "sensor_id": sensor_id,
        "reading_data": reading.reading_data,
        "alert_level": reading.alert_level,
        "timestamp": reading.timestamp,
    }

    alerts: list[Alert] = []
    if evaluation.triggered:
        try:
            alerts = await alert_engine.create_alerts_from_events(
                db, sensor_id, evaluation.events, reading_data, lifecycle
            )
        except Exception:
            logger.exception("Alert creation failed for sensor %s", sensor_id)

    try:
        await lifecycle.publisher.publish("sensor_reading", {
            "sensor_id": sensor_id,
            "reading_data": stored["reading_data"],
            "alert_level": stored["alert_level"],
            "timestamp": stored["timestamp"],
        })
    except Exception:
        logger.exception("Failed to publish reading of sensor %s", sensor_id)

    logger.debug("Reading #%d stored for sensor %s (level=%s)", stored["id"], sensor_id, stored["alert_level"])
    return stored, evaluation, alerts
