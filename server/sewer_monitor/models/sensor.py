from datetime import datetime

from sqlalchemy import String, Float, DateTime, ForeignKey, Index
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sewer_monitor.database import Base, BigIntPK, JSONType, utcnow

SENSOR_TYPES = ("water_level", "gas_detector", "combined")
SENSOR_STATUSES = ("active", "inactive", "maintenance")
ALERT_LEVELS = ("normal", "warning", "critical")


class Sensor(Base):
    __tablename__ = "sensors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    sensor_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    location_name: Mapped[str] = mapped_column(String(255), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    sensor_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", index=True)
    configuration: Mapped[dict | None] = mapped_column(MutableDict.as_mutable(JSONType))
    installation_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    readings = relationship("SensorReading", back_populates="sensor", lazy="noload")
    thresholds = relationship("ThresholdConfig", back_populates="sensor", lazy="noload")


class SensorReading(Base):
    __tablename__ = "sensor_readings"
    __table_args__ = (
        Index("ix_sensor_readings_sensor_timestamp", "sensor_id", "timestamp"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    sensor_id: Mapped[str] = mapped_column(String(64), ForeignKey("sensors.sensor_id"), nullable=False)
    reading_data: Mapped[dict] = mapped_column(JSONType, nullable=False)
    alert_level: Mapped[str] = mapped_column(String(16), nullable=False, default="normal", index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    sensor = relationship("Sensor", back_populates="readings")
