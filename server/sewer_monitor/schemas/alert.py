from pydantic import BaseModel, Field
from typing import Literal, Optional

from sewer_monitor.models.alert import ALERT_SEVERITIES, ALERT_TYPES
from sewer_monitor.schemas.common import UTCDateTime

AlertType = Literal[ALERT_TYPES]
AlertSeverity = Literal[ALERT_SEVERITIES]


class AlertItem(BaseModel):
    id: int
    sensor_id: str
    alert_type: str
    severity: str
    message: str
    alert_data: Optional[dict] = None
    status: str
    whatsapp_sent: bool
    created_at: Optional[UTCDateTime] = None
    acknowledged_at: Optional[UTCDateTime] = None
    resolved_at: Optional[UTCDateTime] = None
    location_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    model_config = {"from_attributes": True}


class AlertListResponse(BaseModel):
    items: list[AlertItem]
    total: int
    page: int
    per_page: int
    pages: int


class AlertCreateRequest(BaseModel):
    sensor_id: str
    alert_type: AlertType
    severity: AlertSeverity
    message: str = Field(min_length=1)
    alert_data: Optional[dict] = None


class AlertResolveRequest(BaseModel):
    reason: Optional[str] = None


class AlertTransitionResponse(BaseModel):
    id: int
    status: str
    acknowledged_at: Optional[UTCDateTime] = None
    resolved_at: Optional[UTCDateTime] = None


class AlertStatsSummary(BaseModel):
    total: int = 0
    active: int = 0
    acknowledged: int = 0
    resolved: int = 0
    critical_active: int = 0
    high_active: int = 0
    medium_active: int = 0
    low_active: int = 0


class AlertTypeCount(BaseModel):
    alert_type: str
    count: int
    active_count: int


class AlertStatsResponse(BaseModel):
    summary: AlertStatsSummary
    by_type: list[AlertTypeCount]


class NotificationLogItem(BaseModel):
    id: int
    alert_id: int
    recipient: str
    channel: str
    status: str
    error_message: Optional[str] = None
    created_at: Optional[UTCDateTime] = None

    model_config = {"from_attributes": True}
