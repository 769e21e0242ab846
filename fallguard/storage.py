"""
Key/value settings store, user settings view, alert history and contact book.

Collections are stored the way a mobile preferences store holds them: a list
of JSON-encoded strings under a single key.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional

from .config import (
    ALERT_COUNTDOWN_SECONDS,
    DEFAULT_USER_NAME,
    KEY_ALERT_HISTORY,
    KEY_APP_ENABLED,
    KEY_AUDIO_ALERTS_ENABLED,
    KEY_COUNTDOWN_SECONDS,
    KEY_EMERGENCY_CONTACTS,
    KEY_FALL_DETECTION_ENABLED,
    KEY_FLASHLIGHT_ENABLED,
    KEY_IMPACT_DETECTION_ENABLED,
    KEY_INACTIVITY_ENABLED,
    KEY_SAMPLING_RATE,
    KEY_USER_NAME,
    KEY_VIBRATION_ENABLED,
    MAX_ALERT_HISTORY,
    MAX_EMERGENCY_CONTACTS,
    SENSOR_SAMPLING_RATE,
)
from .models import Alert, AlertStatus, AlertType, EmergencyContact
from .services.sms import is_valid_phone_number

logger = logging.getLogger(__name__)


class ConfigStore:
    """
    Thread-safe in-memory key/value store with typed accessors
    """

    def __init__(self, initial=None):
        self._lock = threading.RLock()
        self._values = dict(initial or {})

    def _get(self, key, expected_type, default):
        with self._lock:
            value = self._values.get(key, default)
        if value is None or isinstance(value, expected_type):
            return value
        logger.warning(f"Ignoring stored value for '{key}': unexpected type {type(value).__name__}")
        return default

    def get_bool(self, key, default=None) -> Optional[bool]:
        return self._get(key, bool, default)

    def get_int(self, key, default=None) -> Optional[int]:
        value = self._get(key, (int, float), default)
        return int(value) if isinstance(value, float) else value

    def get_string(self, key, default=None) -> Optional[str]:
        return self._get(key, str, default)

    def get_string_list(self, key, default=None) -> Optional[List[str]]:
        value = self._get(key, list, default)
        return list(value) if value is not None else None

    def set_bool(self, key, value: bool):
        self._set(key, bool(value))

    def set_int(self, key, value: int):
        self._set(key, int(value))

    def set_string(self, key, value: str):
        self._set(key, str(value))

    def set_string_list(self, key, values: List[str]):
        self._set(key, [str(v) for v in values])

    def remove(self, key):
        with self._lock:
            self._values.pop(key, None)
            self._persist()

    def _set(self, key, value):
        with self._lock:
            self._values[key] = value
            self._persist()

    def _persist(self):
        """Hook for durable subclasses; called with the lock held."""

    def snapshot(self) -> Dict:
        with self._lock:
            return dict(self._values)


class JsonFileConfigStore(ConfigStore):
    """
    ConfigStore persisted to a JSON file after every write
    """

    def __init__(self, path):
        self.path = Path(path)
        initial = {}
        if self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    initial = json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"Could not read settings file {self.path}: {e}")
                initial = {}
        super().__init__(initial)

    def _persist(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._values, f, indent=2)
        tmp_path.replace(self.path)


@dataclass
class Settings:
    """User-configurable settings with the config constants as defaults."""

    app_enabled: bool = True
    fall_detection_enabled: bool = True
    impact_detection_enabled: bool = True
    audio_alerts_enabled: bool = True
    vibration_enabled: bool = True
    flashlight_enabled: bool = True
    sampling_rate: int = SENSOR_SAMPLING_RATE
    countdown_seconds: int = ALERT_COUNTDOWN_SECONDS
    user_name: str = DEFAULT_USER_NAME
    inactivity_detection_enabled: bool = False

    @classmethod
    def load(cls, store: ConfigStore) -> "Settings":
        defaults = cls()
        sampling_rate = store.get_int(KEY_SAMPLING_RATE, defaults.sampling_rate)
        if sampling_rate <= 0:
            logger.warning(f"Invalid sampling rate {sampling_rate}, using default")
            sampling_rate = defaults.sampling_rate
        return cls(
            app_enabled=store.get_bool(KEY_APP_ENABLED, defaults.app_enabled),
            fall_detection_enabled=store.get_bool(KEY_FALL_DETECTION_ENABLED, True),
            impact_detection_enabled=store.get_bool(KEY_IMPACT_DETECTION_ENABLED, True),
            audio_alerts_enabled=store.get_bool(KEY_AUDIO_ALERTS_ENABLED, True),
            vibration_enabled=store.get_bool(KEY_VIBRATION_ENABLED, True),
            flashlight_enabled=store.get_bool(KEY_FLASHLIGHT_ENABLED, True),
            sampling_rate=sampling_rate,
            countdown_seconds=store.get_int(KEY_COUNTDOWN_SECONDS, defaults.countdown_seconds),
            user_name=store.get_string(KEY_USER_NAME, defaults.user_name),
            inactivity_detection_enabled=store.get_bool(KEY_INACTIVITY_ENABLED, False),
        )

    def save(self, store: ConfigStore):
        store.set_bool(KEY_APP_ENABLED, self.app_enabled)
        store.set_bool(KEY_FALL_DETECTION_ENABLED, self.fall_detection_enabled)
        store.set_bool(KEY_IMPACT_DETECTION_ENABLED, self.impact_detection_enabled)
        store.set_bool(KEY_AUDIO_ALERTS_ENABLED, self.audio_alerts_enabled)
        store.set_bool(KEY_VIBRATION_ENABLED, self.vibration_enabled)
        store.set_bool(KEY_FLASHLIGHT_ENABLED, self.flashlight_enabled)
        store.set_int(KEY_SAMPLING_RATE, self.sampling_rate)
        store.set_int(KEY_COUNTDOWN_SECONDS, self.countdown_seconds)
        store.set_string(KEY_USER_NAME, self.user_name)
        store.set_bool(KEY_INACTIVITY_ENABLED, self.inactivity_detection_enabled)


class AlertHistory:
    """
    Bounded alert history (oldest evicted first) stored as JSON strings
    """

    def __init__(self, store: ConfigStore, max_entries=MAX_ALERT_HISTORY):
        self.store = store
        self.max_entries = max_entries
        self._lock = threading.Lock()

    def _raw(self) -> List[str]:
        return self.store.get_string_list(KEY_ALERT_HISTORY, []) or []

    @staticmethod
    def _entry_id(raw: str) -> Optional[str]:
        try:
            return json.loads(raw).get("id")
        except (ValueError, AttributeError):
            return None

    def _write(self, entries: List[str]):
        while len(entries) > self.max_entries:
            entries.pop(0)
        self.store.set_string_list(KEY_ALERT_HISTORY, entries)

    def save(self, alert: Alert):
        with self._lock:
            entries = self._raw()
            entries.append(json.dumps(alert.to_dict()))
            self._write(entries)

    def update(self, alert: Alert):
        """Replace the stored record with the same id, appending it when absent."""
        with self._lock:
            entries = self._raw()
            for i, raw in enumerate(entries):
                if self._entry_id(raw) == alert.id:
                    entries[i] = json.dumps(alert.to_dict())
                    break
            else:
                entries.append(json.dumps(alert.to_dict()))
            self._write(entries)

    def load(self) -> List[Alert]:
        """All alerts, newest first. Corrupt entries are skipped."""
        alerts = []
        for raw in self._raw():
            try:
                alerts.append(Alert.from_dict(json.loads(raw)))
            except (ValueError, KeyError, TypeError) as e:
                logger.error(f"Skipping unreadable alert history entry: {e}")
        alerts.sort(key=lambda a: a.timestamp, reverse=True)
        return alerts

    def get(self, alert_id) -> Optional[Alert]:
        return next((a for a in self.load() if a.id == alert_id), None)

    def delete(self, alert_id):
        with self._lock:
            entries = [raw for raw in self._raw() if self._entry_id(raw) != alert_id]
            self.store.set_string_list(KEY_ALERT_HISTORY, entries)

    def clear(self):
        with self._lock:
            self.store.remove(KEY_ALERT_HISTORY)

    def count(self) -> int:
        return len(self._raw())

    def by_type(self, alert_type: AlertType) -> List[Alert]:
        return [a for a in self.load() if a.type is alert_type]

    def by_status(self, status: AlertStatus) -> List[Alert]:
        return [a for a in self.load() if a.status is status]

    def recent(self, limit=10) -> List[Alert]:
        return self.load()[:limit]

    def export_json(self) -> str:
        return json.dumps([a.to_dict() for a in self.load()])

    def import_json(self, payload: str, append=True):
        imported = [Alert.from_dict(d) for d in json.loads(payload)]
        if not append:
            self.clear()
        # Oldest first so eviction keeps the newest records
        for alert in sorted(imported, key=lambda a: a.timestamp):
            self.save(alert)

    def statistics(self, now=None) -> Dict:
        now = time.time() if now is None else now
        week_ago = now - 7 * 24 * 3600
        month_ago = now - 30 * 24 * 3600

        stats = {
            "total": 0,
            "byType": {},
            "byStatus": {},
            "bySeverity": {},
            "lastWeek": 0,
            "lastMonth": 0,
        }
        for alert in self.load():
            stats["total"] += 1
            for bucket, key in (
                ("byType", alert.type.value),
                ("byStatus", alert.status.value),
                ("bySeverity", alert.severity.value),
            ):
                stats[bucket][key] = stats[bucket].get(key, 0) + 1
            if alert.timestamp > week_ago:
                stats["lastWeek"] += 1
            if alert.timestamp > month_ago:
                stats["lastMonth"] += 1
        return stats


class ContactBook:
    """
    Emergency contacts stored as JSON strings, with validation and limits
    """

    def __init__(self, store: ConfigStore, max_contacts=MAX_EMERGENCY_CONTACTS):
        self.store = store
        self.max_contacts = max_contacts
        self._lock = threading.Lock()

    def load(self) -> List[EmergencyContact]:
        contacts = []
        for raw in self.store.get_string_list(KEY_EMERGENCY_CONTACTS, []) or []:
            try:
                contacts.append(EmergencyContact.from_dict(json.loads(raw)))
            except (ValueError, KeyError, TypeError) as e:
                logger.error(f"Skipping unreadable contact entry: {e}")
        return contacts

    def save_all(self, contacts: List[EmergencyContact]):
        self.store.set_string_list(
            KEY_EMERGENCY_CONTACTS, [json.dumps(c.to_dict()) for c in contacts]
        )

    @staticmethod
    def validate(contact: EmergencyContact) -> bool:
        if not contact.name.strip() or not contact.phone_number.strip():
            return False
        return is_valid_phone_number(contact.phone_number)

    def add(self, contact: EmergencyContact) -> bool:
        with self._lock:
            contacts = self.load()
            if len(contacts) >= self.max_contacts:
                logger.warning("Maximum number of emergency contacts reached")
                return False
            if any(c.phone_number == contact.phone_number for c in contacts):
                logger.warning("Contact with this phone number already exists")
                return False
            if not self.validate(contact):
                logger.warning(f"Rejected invalid contact '{contact.name}'")
                return False
            contacts.append(contact)
            self.save_all(contacts)
            return True

    def update(self, contact: EmergencyContact) -> bool:
        with self._lock:
            contacts = self.load()
            index = next((i for i, c in enumerate(contacts) if c.id == contact.id), None)
            if index is None:
                logger.warning(f"Contact {contact.id} not found for update")
                return False
            if any(c.id != contact.id and c.phone_number == contact.phone_number for c in contacts):
                logger.warning("Another contact with this phone number already exists")
                return False
            contacts[index] = contact
            self.save_all(contacts)
            return True

    def remove(self, contact_id) -> bool:
        with self._lock:
            contacts = self.load()
            remaining = [c for c in contacts if c.id != contact_id]
            self.save_all(remaining)
            return len(remaining) != len(contacts)

    def set_enabled(self, contact_id, enabled: bool) -> bool:
        with self._lock:
            contacts = self.load()
            for i, c in enumerate(contacts):
                if c.id == contact_id:
                    contacts[i] = replace(c, is_enabled=enabled)
                    self.save_all(contacts)
                    return True
            return False

    def enabled(self) -> List[EmergencyContact]:
        return [c for c in self.load() if c.is_enabled]

    def primary(self) -> List[EmergencyContact]:
        return [c for c in self.load() if c.is_primary and c.is_enabled]

    def export_json(self) -> str:
        return json.dumps(
            {
                "version": "1.0",
                "timestamp": time.time(),
                "contacts": [c.to_dict() for c in self.load()],
            }
        )

    def import_json(self, payload: str) -> bool:
        try:
            data = json.loads(payload)
            contacts = [EmergencyContact.from_dict(d) for d in data["contacts"]]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Invalid contact import data: {e}")
            return False
        if not all(self.validate(c) for c in contacts):
            logger.error("Invalid contact data found in import")
            return False
        self.save_all(contacts[: self.max_contacts])
        return True
