"""
Data model for the FallGuard monitor: sensor samples, detection events,
alerts, contacts and location fixes.

All persisted records round-trip through plain dicts (``to_dict`` /
``from_dict``) so they can be stored as JSON strings in a key/value store.
"""

import enum
import math
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts).isoformat(timespec="milliseconds")


def _from_iso(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    return datetime.fromisoformat(value).timestamp()


@dataclass(frozen=True)
class SensorSample:
    """One synchronised accelerometer (m/s^2) + gyroscope (rad/s) reading."""

    timestamp: float
    ax: float
    ay: float
    az: float
    gx: float = 0.0
    gy: float = 0.0
    gz: float = 0.0

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.ax * self.ax + self.ay * self.ay + self.az * self.az)

    @property
    def gyro_magnitude(self) -> float:
        return math.sqrt(self.gx * self.gx + self.gy * self.gy + self.gz * self.gz)

    def is_finite(self) -> bool:
        return all(
            math.isfinite(v)
            for v in (self.timestamp, self.ax, self.ay, self.az, self.gx, self.gy, self.gz)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "accelerometerX": self.ax,
            "accelerometerY": self.ay,
            "accelerometerZ": self.az,
            "gyroscopeX": self.gx,
            "gyroscopeY": self.gy,
            "gyroscopeZ": self.gz,
            "magnitude": self.magnitude,
        }


@dataclass(frozen=True)
class SensorSnapshot:
    """Derived per-sample record emitted by the signal processor."""

    sample: SensorSample
    magnitude: float
    baseline: float

    @property
    def magnitude_change(self) -> float:
        return abs(self.magnitude - self.baseline)

    def to_dict(self) -> Dict[str, Any]:
        data = self.sample.to_dict()
        data["baseline"] = self.baseline
        return data


class DetectionKind(enum.Enum):
    FALL = "fall"
    IMPACT = "impact"


@dataclass(frozen=True)
class DetectionEvent:
    kind: DetectionKind
    timestamp: float


class AlertType(enum.Enum):
    FALL = "fall"
    IMPACT = "impact"
    PANIC_BUTTON = "panic_button"
    INACTIVITY = "inactivity"
    MEDICAL_EMERGENCY = "medical_emergency"
    CUSTOM = "custom"
    MANUAL = "manual"

    @property
    def description(self) -> str:
        return _ALERT_TYPE_DESCRIPTIONS[self]

    @classmethod
    def from_detection(cls, kind: DetectionKind) -> "AlertType":
        return cls.FALL if kind is DetectionKind.FALL else cls.IMPACT


_ALERT_TYPE_DESCRIPTIONS = {
    AlertType.FALL: "Fall Detected",
    AlertType.IMPACT: "Impact/Crash Detected",
    AlertType.PANIC_BUTTON: "Panic Button Pressed",
    AlertType.INACTIVITY: "Inactivity Alert",
    AlertType.MEDICAL_EMERGENCY: "Medical Emergency",
    AlertType.CUSTOM: "Custom Alert",
    AlertType.MANUAL: "Manual Emergency",
}


class AlertSeverity(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(enum.Enum):
    TRIGGERED = "triggered"
    SENT = "sent"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    FAILED = "failed"


_id_lock = threading.Lock()
_last_id_ms = 0


def generate_alert_id(now: Optional[float] = None) -> str:
    """Epoch-millisecond id, bumped forward when two alerts share a millisecond."""
    global _last_id_ms
    ms = int((time.time() if now is None else now) * 1000)
    with _id_lock:
        if ms <= _last_id_ms:
            ms = _last_id_ms + 1
        _last_id_ms = ms
    return str(ms)


@dataclass(frozen=True)
class Alert:
    id: str
    type: AlertType
    severity: AlertSeverity
    status: AlertStatus
    timestamp: float
    custom_message: Optional[str] = None
    sensor_data: Optional[Dict[str, Any]] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    sent_to_contacts: List[str] = field(default_factory=list)
    resolved_at: Optional[float] = None
    resolved_by: Optional[str] = None

    def with_status(self, status: AlertStatus, **changes) -> "Alert":
        return replace(self, status=status, **changes)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "status": self.status.value,
            "timestamp": _iso(self.timestamp),
            "customMessage": self.custom_message,
            "sensorData": self.sensor_data,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
            "sentToContacts": list(self.sent_to_contacts),
            "resolvedAt": _iso(self.resolved_at),
            "resolvedBy": self.resolved_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        return cls(
            id=data["id"],
            type=AlertType(data["type"]),
            severity=AlertSeverity(data["severity"]),
            status=AlertStatus(data["status"]),
            timestamp=_from_iso(data["timestamp"]),
            custom_message=data.get("customMessage"),
            sensor_data=data.get("sensorData"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            address=data.get("address"),
            sent_to_contacts=list(data.get("sentToContacts") or []),
            resolved_at=_from_iso(data.get("resolvedAt")),
            resolved_by=data.get("resolvedBy"),
        )


@dataclass(frozen=True, eq=False)
class EmergencyContact:
    id: str
    name: str
    phone_number: str
    relationship: Optional[str] = None
    is_primary: bool = False
    is_enabled: bool = True

    def __eq__(self, other):
        return isinstance(other, EmergencyContact) and other.id == self.id

    def __hash__(self):
        return hash(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phoneNumber": self.phone_number,
            "relationship": self.relationship,
            "isPrimary": self.is_primary,
            "isEnabled": self.is_enabled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmergencyContact":
        return cls(
            id=data["id"],
            name=data["name"],
            phone_number=data["phoneNumber"],
            relationship=data.get("relationship"),
            is_primary=bool(data.get("isPrimary", False)),
            is_enabled=bool(data.get("isEnabled", True)),
        )


@dataclass(frozen=True)
class LocationFix:
    latitude: float
    longitude: float
    timestamp: float
    altitude: Optional[float] = None
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    address: Optional[str] = None

    def describe(self) -> str:
        coords = f"{self.latitude:.6f}, {self.longitude:.6f}"
        if self.address:
            return f"{self.address} ({coords})"
        return coords


@dataclass
class DispatchReport:
    """Per-recipient outcome of an SMS batch (contact ids)."""

    sent: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return not self.sent

    @property
    def all_sent(self) -> bool:
        return bool(self.sent) and not self.failed
