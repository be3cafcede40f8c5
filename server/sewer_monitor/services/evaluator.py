"""
Reading evaluator.

Classifies a sensor reading against the sensor's enabled threshold
configurations. Classification is pure: it returns the reading's alert level
together with the list of triggered threshold events and never touches
alerts. Turning events into alerts is the job of ``alert_engine``.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.models import ThresholdConfig
from sewer_monitor.models.sensor import ALERT_LEVELS

logger = logging.getLogger(__name__)

LEVEL_RANK = {level: rank for rank, level in enumerate(ALERT_LEVELS)}


@dataclass(frozen=True)
class TriggeredEvent:
    """A single threshold crossed by one parameter of a reading."""

    parameter: str
    value: float
    threshold: float
    level: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "parameter": self.parameter,
            "value": self.value,
            "threshold": self.threshold,
            "level": self.level,
        }


@dataclass
class ReadingEvaluation:
    level: str = "normal"
    events: list[TriggeredEvent] = field(default_factory=list)

    @property
    def triggered(self) -> bool:
        return bool(self.events)


def _numeric(value: Any) -> float | None:
    # bool is an int subclass; a True flag is not a measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def classify_reading(
    configs: Iterable[ThresholdConfig],
    reading: Mapping[str, Any],
) -> ReadingEvaluation:
    """
    Classify a reading against threshold configurations.

    For each enabled config whose parameter is present in the reading, a
    value at or above the critical threshold yields a critical event,
    otherwise a value at or above the warning threshold yields a warning
    event. Critical dominates: the returned level is the highest level
    across all parameters.

    Args:
        configs: Threshold configurations of the sensor.
        reading: Parameter name -> measured value.

    Returns:
        ReadingEvaluation with the overall level and triggered events.
    """
    result = ReadingEvaluation()

    for config in configs:
        if not config.enabled:
            continue
        value = _numeric(reading.get(config.parameter_name))
        if value is None:
            continue

        critical = config.threshold_critical
        warning = config.threshold_warning

        if critical is not None and value >= critical:
            event = TriggeredEvent(config.parameter_name, value, critical, "critical")
        elif warning is not None and value >= warning:
            event = TriggeredEvent(config.parameter_name, value, warning, "warning")
        else:
            continue

        result.events.append(event)
        if LEVEL_RANK[event.level] > LEVEL_RANK[result.level]:
            result.level = event.level

    return result


async def load_thresholds(db: AsyncSession, sensor_id: str) -> list[ThresholdConfig]:
    result = await db.execute(
        select(ThresholdConfig)
        .where(
            ThresholdConfig.sensor_id == sensor_id,
            ThresholdConfig.enabled.is_(True),
        )
        .order_by(ThresholdConfig.id)
    )
    return list(result.scalars().all())


async def evaluate_reading(
    db: AsyncSession,
    sensor_id: str,
    reading: Mapping[str, Any],
) -> ReadingEvaluation:
    """
    Load the sensor's thresholds and classify the reading.

    A storage failure while loading thresholds degrades to a ``normal``
    evaluation so the reading can still be persisted.
    """
    try:
        configs = await load_thresholds(db, sensor_id)
    except SQLAlchemyError:
        logger.exception("Threshold lookup failed for sensor %s, classifying as normal", sensor_id)
        await db.rollback()
        return ReadingEvaluation()

    evaluation = classify_reading(configs, reading)
    if evaluation.triggered:
        logger.debug(
            "Sensor %s reading classified %s (%d thresholds crossed)",
            sensor_id,
            evaluation.level,
            len(evaluation.events),
        )
    return evaluation
