"""
tests/test_lifecycle.py
=======================
Alert state machine: create, acknowledge, resolve and the events published
for each transition.
"""

from __future__ import annotations

import pytest

from sewer_monitor.database import ensure_aware
from sewer_monitor.services.lifecycle import (
    AlertLifecycleManager,
    AlertNotFoundError,
    AlertStateError,
    alert_summary,
)


async def _new_alert(db, lifecycle, sensor_id="S1", severity="critical"):
    return await lifecycle.create_alert(
        db,
        sensor_id=sensor_id,
        alert_type="flood_risk",
        severity=severity,
        message="Critical water level detected at sensor S1: 95 (threshold: 90)",
        alert_data={"parameter": "water_level", "value": 95, "threshold": 90},
    )


class TestCreateAlert:
    @pytest.mark.asyncio
    async def test_new_alert_is_active_and_unsent(self, db, lifecycle, make_sensor):
        await make_sensor("S1")
        alert = await _new_alert(db, lifecycle)

        assert alert.id is not None
        assert alert.status == "active"
        assert alert.whatsapp_sent is False
        assert alert.created_at is not None
        assert alert.acknowledged_at is None
        assert alert.resolved_at is None

    @pytest.mark.asyncio
    async def test_new_alert_event_payload(self, db, lifecycle, publisher, make_sensor):
        await make_sensor("S1")
        alert = await _new_alert(db, lifecycle)

        event, data = publisher.events[0]
        assert event == "new_alert"
        assert data == alert_summary(alert)
        assert set(data) == {"id", "sensor_id", "alert_type", "severity", "message", "created_at"}

    @pytest.mark.asyncio
    async def test_publisher_failure_does_not_break_creation(self, db, make_sensor):
        class ExplodingPublisher:
            async def publish(self, event, data):
                raise RuntimeError("socket closed")

        await make_sensor("S1")
        lifecycle = AlertLifecycleManager(ExplodingPublisher())

        alert = await _new_alert(db, lifecycle)
        assert alert.id is not None

    def test_default_publisher_is_null(self):
        lifecycle = AlertLifecycleManager()
        assert lifecycle.publisher is not None


class TestAcknowledge:
    @pytest.mark.asyncio
    async def test_acknowledge_active_alert(self, db, lifecycle, publisher, make_sensor, make_user):
        await make_sensor("S1")
        operator = await make_user("joana")
        alert = await _new_alert(db, lifecycle)

        updated = await lifecycle.acknowledge(db, alert.id, user_id=operator.id)

        assert updated.status == "acknowledged"
        assert updated.acknowledged_at is not None
        assert updated.acknowledged_by == operator.id
        assert publisher.names() == ["new_alert", "alert_acknowledged"]
        assert publisher.events[-1][1]["id"] == alert.id

    @pytest.mark.asyncio
    async def test_second_acknowledge_is_rejected(self, db, lifecycle, make_sensor):
        await make_sensor("S1")
        alert = await _new_alert(db, lifecycle)
        alert_id = alert.id
        first = await lifecycle.acknowledge(db, alert_id)
        first_ts = first.acknowledged_at

        with pytest.raises(AlertNotFoundError):
            await lifecycle.acknowledge(db, alert_id)

        again = await lifecycle.get_alert(db, alert_id)
        assert again.status == "acknowledged"
        assert ensure_aware(again.acknowledged_at) == ensure_aware(first_ts)

    @pytest.mark.asyncio
    async def test_acknowledge_resolved_alert_is_rejected(self, db, lifecycle, make_sensor):
        await make_sensor("S1")
        alert = await _new_alert(db, lifecycle)
        await lifecycle.resolve(db, alert.id)

        with pytest.raises(AlertNotFoundError):
            await lifecycle.acknowledge(db, alert.id)

    @pytest.mark.asyncio
    async def test_acknowledge_missing_alert(self, db, lifecycle):
        with pytest.raises(AlertNotFoundError):
            await lifecycle.acknowledge(db, 4242)

    @pytest.mark.asyncio
    async def test_rejected_acknowledge_leaves_loaded_objects_usable(self, db, lifecycle, make_sensor):
        sensor = await make_sensor("S1")
        alert = await _new_alert(db, lifecycle)
        await lifecycle.acknowledge(db, alert.id)

        with pytest.raises(AlertNotFoundError):
            await lifecycle.acknowledge(db, alert.id)

        # Attribute access must not need a lazy reload from the async session.
        assert alert.sensor_id == "S1"
        assert sensor.location_name == "Rua das Flores, 100"


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolve_active_alert(self, db, lifecycle, publisher, make_sensor):
        await make_sensor("S1")
        alert = await _new_alert(db, lifecycle)

        updated = await lifecycle.resolve(db, alert.id, reason="Water receded")

        assert updated.status == "resolved"
        assert updated.resolved_at is not None
        assert updated.acknowledged_at is None
        event, data = publisher.events[-1]
        assert event == "alert_resolved"
        assert data["id"] == alert.id
        assert data["reason"] == "Water receded"

    @pytest.mark.asyncio
    async def test_resolve_acknowledged_alert(self, db, lifecycle, make_sensor, make_user):
        await make_sensor("S1")
        admin = await make_user("root", role="admin")
        alert = await _new_alert(db, lifecycle)
        await lifecycle.acknowledge(db, alert.id)

        updated = await lifecycle.resolve(db, alert.id, user_id=admin.id)

        assert updated.status == "resolved"
        assert updated.acknowledged_at is not None
        assert updated.resolved_by == admin.id

    @pytest.mark.asyncio
    async def test_resolve_event_without_reason(self, db, lifecycle, publisher, make_sensor):
        await make_sensor("S1")
        alert = await _new_alert(db, lifecycle)
        await lifecycle.resolve(db, alert.id)

        assert "reason" not in publisher.events[-1][1]

    @pytest.mark.asyncio
    async def test_resolve_twice_keeps_first_timestamp(self, db, lifecycle, publisher, make_sensor):
        await make_sensor("S1")
        alert = await _new_alert(db, lifecycle)
        alert_id = alert.id
        first = await lifecycle.resolve(db, alert_id)
        first_ts = ensure_aware(first.resolved_at)

        with pytest.raises(AlertStateError):
            await lifecycle.resolve(db, alert_id)

        again = await lifecycle.get_alert(db, alert_id)
        assert ensure_aware(again.resolved_at) == first_ts
        assert publisher.names().count("alert_resolved") == 1

    @pytest.mark.asyncio
    async def test_resolve_missing_alert(self, db, lifecycle):
        with pytest.raises(AlertNotFoundError):
            await lifecycle.resolve(db, 4242)

    @pytest.mark.asyncio
    async def test_rejected_resolve_leaves_loaded_objects_usable(self, db, lifecycle, make_sensor):
        sensor = await make_sensor("S1")
        alert = await _new_alert(db, lifecycle)
        await lifecycle.resolve(db, alert.id)

        with pytest.raises(AlertStateError):
            await lifecycle.resolve(db, alert.id)

        assert alert.severity == "critical"
        assert sensor.sensor_type == "combined"
