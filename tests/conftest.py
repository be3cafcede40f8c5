"""
tests/conftest.py
=================
Shared fixtures: an in-memory SQLite database, a recording event publisher
and small factories for sensors, thresholds and users.
"""

from __future__ import annotations

import os

# Must be set before sewer_monitor.database creates its module-level engine.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["WHATSAPP_ENABLED"] = "false"
os.environ["ALERT_LANGUAGE"] = "en"
os.environ["TIMEZONE"] = "America/Sao_Paulo"

from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from sewer_monitor.database import Base, create_session_factory
from sewer_monitor.models import Sensor, ThresholdConfig, User
from sewer_monitor.services.lifecycle import AlertLifecycleManager


class RecordingPublisher:
    """Collects published events instead of sending them anywhere."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, event: str, data: dict[str, Any]) -> None:
        self.events.append((event, data))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def lifecycle(publisher) -> AlertLifecycleManager:
    return AlertLifecycleManager(publisher)


@pytest.fixture
def make_sensor(db):
    async def _make(
        sensor_id: str = "S1",
        location_name: str = "Rua das Flores, 100",
        sensor_type: str = "combined",
        status: str = "active",
    ) -> Sensor:
        sensor = Sensor(
            sensor_id=sensor_id,
            location_name=location_name,
            latitude=-23.55,
            longitude=-46.63,
            sensor_type=sensor_type,
            status=status,
            configuration={},
        )
        db.add(sensor)
        await db.commit()
        return sensor

    return _make


@pytest.fixture
def make_threshold(db):
    async def _make(
        sensor_id: str,
        parameter_name: str,
        warning: float | None = None,
        critical: float | None = None,
        enabled: bool = True,
    ) -> ThresholdConfig:
        config = ThresholdConfig(
            sensor_id=sensor_id,
            parameter_name=parameter_name,
            threshold_warning=warning,
            threshold_critical=critical,
            enabled=enabled,
        )
        db.add(config)
        await db.commit()
        return config

    return _make


@pytest.fixture
def make_user(db):
    async def _make(
        username: str,
        role: str = "operator",
        phone_number: str | None = "+5511999990000",
        whatsapp_notifications: bool = True,
        is_active: bool = True,
        password_hash: str | None = None,
    ) -> User:
        user = User(
            username=username,
            full_name=username.title(),
            role=role,
            phone_number=phone_number,
            whatsapp_notifications=whatsapp_notifications,
            is_active=is_active,
            password_hash=password_hash,
            language="en",
        )
        db.add(user)
        await db.commit()
        return user

    return _make
