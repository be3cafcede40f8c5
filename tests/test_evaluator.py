"""
tests/test_evaluator.py
=======================
Unit tests for reading classification against threshold configurations.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from sewer_monitor.models import ThresholdConfig
from sewer_monitor.services.evaluator import (
    ReadingEvaluation,
    TriggeredEvent,
    classify_reading,
    evaluate_reading,
)


def _config(parameter: str, warning=None, critical=None, enabled=True) -> ThresholdConfig:
    return ThresholdConfig(
        sensor_id="S1",
        parameter_name=parameter,
        threshold_warning=warning,
        threshold_critical=critical,
        enabled=enabled,
    )


# ---------------------------------------------------------------------------
# classify_reading
# ---------------------------------------------------------------------------

class TestClassifyReading:
    def test_no_configs_is_normal(self):
        result = classify_reading([], {"water_level": 500})
        assert result.level == "normal"
        assert result.events == []
        assert result.triggered is False

    def test_below_warning_is_normal(self):
        result = classify_reading([_config("water_level", 70, 90)], {"water_level": 69.9})
        assert result.level == "normal"

    def test_warning_boundary_is_inclusive(self):
        result = classify_reading([_config("water_level", 70, 90)], {"water_level": 70})
        assert result.level == "warning"
        assert result.events == [TriggeredEvent("water_level", 70, 70, "warning")]

    def test_critical_boundary_is_inclusive(self):
        result = classify_reading([_config("water_level", 70, 90)], {"water_level": 90})
        assert result.level == "critical"
        assert result.events[0].threshold == 90

    def test_critical_event_replaces_warning_for_same_parameter(self):
        result = classify_reading([_config("water_level", 70, 90)], {"water_level": 95})
        assert len(result.events) == 1
        assert result.events[0].level == "critical"

    def test_critical_dominates_across_parameters(self):
        configs = [_config("water_level", 70, 90), _config("gas_h2s", 10, 20)]
        result = classify_reading(configs, {"water_level": 75, "gas_h2s": 25})
        assert result.level == "critical"
        assert {e.level for e in result.events} == {"warning", "critical"}

    def test_warning_only_config(self):
        result = classify_reading([_config("gas_co", warning=35)], {"gas_co": 200})
        assert result.level == "warning"

    def test_critical_only_config(self):
        result = classify_reading([_config("gas_co", critical=100)], {"gas_co": 50})
        assert result.level == "normal"

    def test_disabled_config_is_ignored(self):
        result = classify_reading([_config("water_level", 70, 90, enabled=False)], {"water_level": 99})
        assert result.level == "normal"

    def test_parameter_missing_from_reading(self):
        result = classify_reading([_config("gas_ch4", 5, 10)], {"water_level": 99})
        assert result.level == "normal"

    def test_null_and_non_numeric_values_are_ignored(self):
        configs = [_config("water_level", 70, 90), _config("gas_co", 35, 100)]
        result = classify_reading(configs, {"water_level": None, "gas_co": "high"})
        assert result.level == "normal"

    def test_boolean_value_is_not_a_measurement(self):
        result = classify_reading([_config("water_level", critical=1)], {"water_level": True})
        assert result.level == "normal"

    def test_zero_threshold_is_honoured(self):
        result = classify_reading([_config("gas_h2s", critical=0)], {"gas_h2s": 0})
        assert result.level == "critical"

    def test_event_to_dict(self):
        event = TriggeredEvent("water_level", 95, 90, "critical")
        assert event.to_dict() == {
            "parameter": "water_level",
            "value": 95,
            "threshold": 90,
            "level": "critical",
        }


# ---------------------------------------------------------------------------
# evaluate_reading
# ---------------------------------------------------------------------------

class TestEvaluateReading:
    @pytest.mark.asyncio
    async def test_uses_enabled_thresholds_of_sensor(self, db, make_sensor, make_threshold):
        await make_sensor("S1")
        await make_sensor("S2")
        await make_threshold("S1", "water_level", 70, 90)
        await make_threshold("S2", "water_level", 10, 20)
        await make_threshold("S1", "gas_co", 35, 100, enabled=False)

        result = await evaluate_reading(db, "S1", {"water_level": 50, "gas_co": 500})
        assert result.level == "normal"

        result = await evaluate_reading(db, "S1", {"water_level": 92})
        assert result.level == "critical"

    @pytest.mark.asyncio
    async def test_sensor_without_thresholds_is_normal(self, db, make_sensor):
        await make_sensor("S9")
        result = await evaluate_reading(db, "S9", {"water_level": 1000})
        assert result == ReadingEvaluation()

    @pytest.mark.asyncio
    async def test_storage_failure_degrades_to_normal(self):
        db = MagicMock()
        db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
        db.rollback = AsyncMock()

        result = await evaluate_reading(db, "S1", {"water_level": 99})

        assert result.level == "normal"
        assert result.events == []
        db.rollback.assert_awaited_once()
