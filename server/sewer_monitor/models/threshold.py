from datetime import datetime

from sqlalchemy import String, Float, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sewer_monitor.database import Base, utcnow


class ThresholdConfig(Base):
    __tablename__ = "threshold_configs"
    __table_args__ = (
        UniqueConstraint("sensor_id", "parameter_name", name="uq_threshold_sensor_parameter"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    sensor_id: Mapped[str] = mapped_column(String(64), ForeignKey("sensors.sensor_id"), nullable=False, index=True)
    parameter_name: Mapped[str] = mapped_column(String(64), nullable=False)
    threshold_warning: Mapped[float | None] = mapped_column(Float)
    threshold_critical: Mapped[float | None] = mapped_column(Float)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    sensor = relationship("Sensor", back_populates="thresholds")
