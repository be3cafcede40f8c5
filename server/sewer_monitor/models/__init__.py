from sewer_monitor.models.sensor import Sensor, SensorReading
from sewer_monitor.models.threshold import ThresholdConfig
from sewer_monitor.models.alert import Alert, NotificationLog
from sewer_monitor.models.user import User

__all__ = [
    "Sensor", "SensorReading", "ThresholdConfig",
    "Alert", "NotificationLog", "User",
]
