"""
Flashlight strobe alarm
"""

import logging
from typing import Protocol

from ..config import ALARM_DURATION_SECONDS, FLASH_INTERVAL_MS
from .base import RepeatingActuator

logger = logging.getLogger(__name__)


class Torch(Protocol):
    def is_available(self) -> bool: ...

    def enable(self): ...

    def disable(self): ...


class FlashlightAlarm(RepeatingActuator):
    """Toggles the torch every interval; always leaves it switched off"""

    name = "flashlight"

    def __init__(self, torch: Torch, interval_ms=FLASH_INTERVAL_MS, **kwargs):
        super().__init__(**kwargs)
        self.torch = torch
        self.interval_seconds = interval_ms / 1000.0
        self.is_on = False

    def is_available(self) -> bool:
        try:
            return bool(self.torch.is_available())
        except Exception as e:
            logger.error(f"Error checking flashlight availability: {e}")
            return False

    def flash(self, duration=ALARM_DURATION_SECONDS) -> bool:
        if not self.is_available():
            logger.warning("No flashlight available, skipping strobe")
            return False
        self._start_loop(duration)
        logger.info(f"Flashlight strobe started for {duration}s")
        return True

    def _step(self, index):
        if index % 2 == 0:
            self.torch.enable()
            self.is_on = True
        else:
            self.torch.disable()
            self.is_on = False
        return self.interval_seconds

    def _finish(self):
        self.torch.disable()
        self.is_on = False
