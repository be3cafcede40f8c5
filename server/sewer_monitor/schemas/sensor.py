from pydantic import BaseModel, Field
from typing import Literal, Optional
from datetime import datetime

from sewer_monitor.models.sensor import SENSOR_STATUSES, SENSOR_TYPES
from sewer_monitor.schemas.common import UTCDateTime

SensorType = Literal[SENSOR_TYPES]
SensorStatus = Literal[SENSOR_STATUSES]


class SensorCreateRequest(BaseModel):
    sensor_id: str = Field(min_length=1, max_length=64)
    location_name: str = Field(min_length=1)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    sensor_type: SensorType
    configuration: Optional[dict] = None
    installation_date: Optional[datetime] = None


class SensorUpdateRequest(BaseModel):
    location_name: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    sensor_type: Optional[SensorType] = None
    status: Optional[SensorStatus] = None
    configuration: Optional[dict] = None


class SensorResponse(BaseModel):
    sensor_id: str
    location_name: str
    latitude: float
    longitude: float
    sensor_type: str
    status: str
    configuration: Optional[dict] = None
    installation_date: Optional[UTCDateTime] = None
    created_at: Optional[UTCDateTime] = None
    last_reading: Optional[UTCDateTime] = None
    active_alerts: int = 0

    model_config = {"from_attributes": True}


class SensorListResponse(BaseModel):
    items: list[SensorResponse]
    total: int


class ReadingRequest(BaseModel):
    reading_data: dict[str, Optional[float]] = Field(min_length=1)


class ReadingResponse(BaseModel):
    id: int
    sensor_id: str
    reading_data: dict
    alert_level: str
    timestamp: UTCDateTime

    model_config = {"from_attributes": True}


class ReadingIngestResponse(ReadingResponse):
    alerts_created: list[int] = []


class ReadingListResponse(BaseModel):
    items: list[ReadingResponse]
    count: int


class ThresholdRequest(BaseModel):
    threshold_warning: Optional[float] = None
    threshold_critical: Optional[float] = None
    enabled: bool = True


class ThresholdResponse(BaseModel):
    sensor_id: str
    parameter_name: str
    threshold_warning: Optional[float] = None
    threshold_critical: Optional[float] = None
    enabled: bool
    updated_at: Optional[UTCDateTime] = None

    model_config = {"from_attributes": True}
