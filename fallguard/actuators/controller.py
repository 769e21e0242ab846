"""
Fans local alarms out to every enabled actuator
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, Optional

from ..config import ALARM_DURATION_SECONDS, DEFAULT_ALARM_VOLUME
from ..storage import Settings

logger = logging.getLogger(__name__)


class AlarmController:
    """
    Starts audio, vibration and flashlight alarms concurrently

    Each actuator is started on its own worker and fails on its own: a broken
    torch never keeps the siren from sounding.
    """

    def __init__(self, audio=None, vibration=None, flashlight=None, settings: Optional[Settings] = None,
                 start_timeout=5.0):
        self.audio = audio
        self.vibration = vibration
        self.flashlight = flashlight
        self.settings = settings or Settings()
        self.start_timeout = start_timeout
        self._executor = ThreadPoolExecutor(max_workers=3, thread_name_prefix="alarm")

    def _enabled_starters(self, volume, duration):
        starters = {}
        if self.audio is not None and self.settings.audio_alerts_enabled:
            starters["audio"] = lambda: self.audio.play_alarm(volume=volume, duration=duration)
        if self.vibration is not None and self.settings.vibration_enabled:
            starters["vibration"] = lambda: self.vibration.vibrate(duration=duration)
        if self.flashlight is not None and self.settings.flashlight_enabled:
            starters["flashlight"] = lambda: self.flashlight.flash(duration=duration)
        return starters

    def start_all(self, volume=DEFAULT_ALARM_VOLUME, duration=ALARM_DURATION_SECONDS) -> Dict[str, bool]:
        """
        Start every enabled actuator; returns which ones started
        """
        futures = {
            self._executor.submit(start): name
            for name, start in self._enabled_starters(volume, duration).items()
        }
        done, not_done = wait(futures, timeout=self.start_timeout)

        results = {}
        for future, name in futures.items():
            if future in not_done:
                logger.warning(f"{name} alarm still starting after {self.start_timeout}s")
                results[name] = False
                continue
            try:
                results[name] = bool(future.result())
            except Exception as e:
                logger.error(f"{name} alarm failed to start: {e}")
                results[name] = False

        started = [name for name, ok in results.items() if ok]
        logger.info(f"Local alarms started: {', '.join(started) or 'none'}")
        return results

    def stop_all(self):
        for name, actuator in (("audio", self.audio), ("vibration", self.vibration),
                               ("flashlight", self.flashlight)):
            if actuator is None:
                continue
            try:
                actuator.stop()
            except Exception as e:
                logger.error(f"Error stopping {name} alarm: {e}")

    def shutdown(self):
        self.stop_all()
        self._executor.shutdown(wait=False)
