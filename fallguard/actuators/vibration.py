"""
Vibration alarm
"""

import logging
from typing import List, Protocol

from ..config import ALARM_DURATION_SECONDS, ALERT_VIBRATION_PATTERN, EMERGENCY_VIBRATION_PATTERN
from .base import RepeatingActuator

logger = logging.getLogger(__name__)


class VibrationMotor(Protocol):
    def has_vibrator(self) -> bool: ...

    def vibrate(self, pattern: List[int]): ...

    def cancel(self): ...


class VibrationAlarm(RepeatingActuator):
    """
    Repeats a wait/vibrate millisecond pattern (long-short-long by default)
    until the duration ends or stop() is called
    """

    name = "vibration"

    def __init__(self, motor: VibrationMotor, **kwargs):
        super().__init__(**kwargs)
        self.motor = motor
        self.pattern = list(EMERGENCY_VIBRATION_PATTERN)

    def has_vibrator(self) -> bool:
        try:
            return bool(self.motor.has_vibrator())
        except Exception as e:
            logger.error(f"Error checking vibrator availability: {e}")
            return False

    def vibrate(self, pattern=None, duration=ALARM_DURATION_SECONDS) -> bool:
        if not self.has_vibrator():
            logger.warning("No vibrator available, skipping vibration alarm")
            return False
        self.pattern = list(pattern or EMERGENCY_VIBRATION_PATTERN)
        self._start_loop(duration)
        logger.info(f"Vibration alarm started for {duration}s")
        return True

    def vibrate_alert(self):
        """Single short alert pattern (test alerts, countdown warnings)."""
        if self.has_vibrator():
            self.motor.vibrate(list(ALERT_VIBRATION_PATTERN))

    def _step(self, index):
        self.motor.vibrate(self.pattern)
        return sum(self.pattern) / 1000.0

    def _finish(self):
        self.motor.cancel()
