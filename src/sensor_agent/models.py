from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AlertType(str, Enum):
    GUN = "gun"
    FOOTSTEPS = "footsteps"
    MOTION = "motion"
    WHISPER = "whisper"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    DRONE = "drone"
    HELP = "help"


# Older gateway firmware used different names for some alert types.
LEGACY_ALERT_NAMES = {
    "gun_sound": AlertType.GUN,
    "gunshot": AlertType.GUN,
    "whispers": AlertType.WHISPER,
}


def normalize_alert_type(name: str) -> AlertType:
    """
    Map a wire/store alert name onto the closed AlertType set.

    Raises ValueError for names outside the set.
    """
    key = name.strip().lower()
    if key in LEGACY_ALERT_NAMES:
        return LEGACY_ALERT_NAMES[key]
    return AlertType(key)


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.CRITICAL: 2}


class NodeStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    WARNING = "warning"


class NodeClass(str, Enum):
    STANDARD = "standard"
    ADVANCED = "advanced"
    GATEWAY = "gateway"


def empty_alert_flags() -> dict[AlertType, bool]:
    return {alert_type: False for alert_type in AlertType}


class Location(BaseModel):
    lat: float
    lng: float


class SensorNode(BaseModel):
    """
    One field sensor unit as the dashboard sees it.

    `alerts` always carries every AlertType; nodes are never removed during a session.
    """
    id: str
    name: str
    sector: str
    status: NodeStatus = NodeStatus.ONLINE
    battery: int = Field(100, ge=0, le=100)
    signal_strength: int = Field(95, ge=0, le=100)
    last_activity: datetime
    location: Location
    node_class: NodeClass = NodeClass.STANDARD
    alerts: dict[AlertType, bool] = Field(default_factory=empty_alert_flags)


class SensorReading(BaseModel):
    """
    One decoded node reading from a sensor line.

    alert_type is None for the motion protocol, where the flag always means motion.
    """
    node_id: str
    flag: bool
    alert_type: Optional[AlertType] = None

    @property
    def effective_type(self) -> AlertType:
        return self.alert_type or AlertType.MOTION


class AlertEvent(BaseModel):
    id: str
    type: AlertType
    node_id: str
    timestamp: datetime
    description: str
    severity: Severity
    acknowledged: bool = False

    @property
    def key(self) -> str:
        return f"{self.node_id}:{self.type.value}"


class NetworkConnection(BaseModel):
    source: str
    target: str
    strength: int = Field(..., ge=0, le=100)


class NetworkStatus(BaseModel):
    active_nodes: int
    total_nodes: int
    network_health: int


class NotificationState(BaseModel):
    severity: Severity
    should_notify: bool
    sound: str
