"""
tests/test_offline_detector.py
==============================
Detection of active sensors that stopped reporting.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from sewer_monitor.database import utcnow
from sewer_monitor.models import Alert, SensorReading
from sewer_monitor.services.offline_detector import check_offline_sensors, find_offline_sensors

STALENESS = timedelta(hours=2)


async def _reading(db, sensor_id, age: timedelta):
    db.add(SensorReading(
        sensor_id=sensor_id,
        reading_data={"water_level": 10},
        alert_level="normal",
        timestamp=utcnow() - age,
    ))
    await db.commit()


class TestFindOfflineSensors:
    @pytest.mark.asyncio
    async def test_sensor_without_readings_is_offline(self, db, make_sensor):
        await make_sensor("S1", location_name="Av. Paulista")

        offline = await find_offline_sensors(db, STALENESS)

        assert offline == [("S1", "Av. Paulista", None)]

    @pytest.mark.asyncio
    async def test_stale_sensor_is_offline(self, db, make_sensor):
        await make_sensor("S1")
        await _reading(db, "S1", timedelta(hours=3))

        offline = await find_offline_sensors(db, STALENESS)

        assert [row[0] for row in offline] == ["S1"]
        assert offline[0][2] is not None
        assert offline[0][2].tzinfo is not None

    @pytest.mark.asyncio
    async def test_latest_reading_counts(self, db, make_sensor):
        await make_sensor("S1")
        await _reading(db, "S1", timedelta(hours=5))
        await _reading(db, "S1", timedelta(minutes=10))

        assert await find_offline_sensors(db, STALENESS) == []

    @pytest.mark.asyncio
    async def test_inactive_sensors_are_ignored(self, db, make_sensor):
        await make_sensor("S1", status="maintenance")
        await make_sensor("S2", status="inactive")

        assert await find_offline_sensors(db, STALENESS) == []


class TestCheckOfflineSensors:
    @pytest.mark.asyncio
    async def test_creates_high_severity_alert(self, db, lifecycle, publisher, make_sensor):
        await make_sensor("S1", location_name="Av. Paulista")
        await _reading(db, "S1", timedelta(hours=3))

        created = await check_offline_sensors(db, lifecycle, STALENESS)

        assert len(created) == 1
        alert = created[0]
        assert alert.alert_type == "sensor_offline"
        assert alert.severity == "high"
        assert alert.message == "Sensor S1 (Av. Paulista) is offline"
        assert alert.alert_data["last_reading"] is not None
        assert "offline_since" in alert.alert_data
        assert publisher.names() == ["new_alert"]

    @pytest.mark.asyncio
    async def test_never_reported_sensor_has_null_last_reading(self, db, lifecycle, make_sensor):
        await make_sensor("S1")

        created = await check_offline_sensors(db, lifecycle, STALENESS)

        assert created[0].alert_data["last_reading"] is None

    @pytest.mark.asyncio
    async def test_second_sweep_does_not_duplicate(self, db, lifecycle, make_sensor):
        await make_sensor("S1")
        await _reading(db, "S1", timedelta(hours=3))

        first = await check_offline_sensors(db, lifecycle, STALENESS)
        second = await check_offline_sensors(db, lifecycle, STALENESS)

        assert len(first) == 1
        assert second == []
        alerts = (await db.execute(select(Alert).where(Alert.alert_type == "sensor_offline"))).scalars().all()
        assert len(alerts) == 1

    @pytest.mark.asyncio
    async def test_fresh_sensor_not_flagged(self, db, lifecycle, make_sensor):
        await make_sensor("S1")
        await _reading(db, "S1", timedelta(minutes=5))

        assert await check_offline_sensors(db, lifecycle, STALENESS) == []

    @pytest.mark.asyncio
    async def test_resolved_offline_alert_allows_new_one(self, db, lifecycle, make_sensor):
        await make_sensor("S1")
        first = await check_offline_sensors(db, lifecycle, STALENESS)
        await lifecycle.resolve(db, first[0].id)

        second = await check_offline_sensors(db, lifecycle, STALENESS)

        assert len(second) == 1

    @pytest.mark.asyncio
    async def test_recovery_does_not_auto_resolve(self, db, lifecycle, make_sensor):
        await make_sensor("S1")
        created = await check_offline_sensors(db, lifecycle, STALENESS)
        await _reading(db, "S1", timedelta(0))

        await check_offline_sensors(db, lifecycle, STALENESS)

        alert = await lifecycle.get_alert(db, created[0].id)
        assert alert.status == "active"
