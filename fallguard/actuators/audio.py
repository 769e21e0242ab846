"""
Audio alarm: looping siren capped at a fixed duration
Falls back to a synthetic beep pattern when the siren cannot be played
"""

import logging
import threading

import librosa
import numpy as np
from scipy.signal import chirp

from ..config import (
    ALARM_ASSET_PATH,
    ALARM_DURATION_SECONDS,
    ALARM_SAMPLE_RATE,
    BEEP_FREQUENCY_HZ,
    BEEP_OFF_SECONDS,
    BEEP_ON_SECONDS,
    DEFAULT_ALARM_VOLUME,
    SIREN_HIGH_HZ,
    SIREN_LOW_HZ,
    SIREN_SWEEP_SECONDS,
)

logger = logging.getLogger(__name__)


def synthesize_siren(sample_rate=ALARM_SAMPLE_RATE, low_hz=SIREN_LOW_HZ, high_hz=SIREN_HIGH_HZ,
                     sweep_seconds=SIREN_SWEEP_SECONDS):
    """
    One up/down siren cycle (linear chirp low -> high -> low)
    """
    t = np.linspace(0, sweep_seconds, int(sample_rate * sweep_seconds), endpoint=False)
    rising = chirp(t, f0=low_hz, t1=sweep_seconds, f1=high_hz, method="linear")
    falling = chirp(t, f0=high_hz, t1=sweep_seconds, f1=low_hz, method="linear")
    return np.concatenate([rising, falling]).astype(np.float32)


def beep_pattern(sample_rate=ALARM_SAMPLE_RATE, frequency=BEEP_FREQUENCY_HZ,
                 on_seconds=BEEP_ON_SECONDS, off_seconds=BEEP_OFF_SECONDS):
    """One beep followed by silence"""
    t = np.arange(int(sample_rate * on_seconds)) / sample_rate
    tone = np.sin(2 * np.pi * frequency * t)
    silence = np.zeros(int(sample_rate * off_seconds))
    return np.concatenate([tone, silence]).astype(np.float32)


def load_siren(asset_path=None, sample_rate=ALARM_SAMPLE_RATE):
    """
    Load the siren asset with librosa, or synthesise one when no asset is configured
    """
    if asset_path:
        data, sr = librosa.load(asset_path, sr=sample_rate, mono=True)
        if data.size == 0:
            raise ValueError(f"Siren asset is empty: {asset_path}")
        return data.astype(np.float32), sr
    return synthesize_siren(sample_rate), sample_rate


def _default_player():
    # PortAudio is only required once an alarm actually plays
    import sounddevice as sd

    return sd


class AudioAlarm:
    """
    Plays the emergency siren on a loop through sounddevice

    The player only needs ``play(data, samplerate, loop=True)`` and ``stop()``,
    which the sounddevice module provides directly.
    """

    def __init__(self, asset_path=ALARM_ASSET_PATH, sample_rate=ALARM_SAMPLE_RATE, player=None,
                 timer_factory=threading.Timer):
        self.asset_path = asset_path
        self.sample_rate = sample_rate
        self.player = player
        self.timer_factory = timer_factory

        self.is_playing = False
        self.using_fallback = False
        self._lock = threading.RLock()
        self._timer = None
        self._generation = 0

    def _get_player(self):
        if self.player is None:
            self.player = _default_player()
        return self.player

    def play_alarm(self, volume=DEFAULT_ALARM_VOLUME, duration=ALARM_DURATION_SECONDS) -> bool:
        """
        Start the siren; any running alarm is stopped first
        Returns False only when neither the siren nor the beep fallback could play
        """
        self.stop()
        volume = float(np.clip(volume, 0.0, 1.0))

        with self._lock:
            try:
                player = self._get_player()
            except Exception as e:
                logger.error(f"Audio output unavailable: {e}")
                return False

            try:
                siren, sr = load_siren(self.asset_path, self.sample_rate)
                player.play(siren * volume, sr, loop=True)
                self.using_fallback = False
                logger.info("Emergency siren playing")
            except Exception as e:
                logger.warning(f"Siren playback failed, using beep pattern: {e}")
                try:
                    player.play(beep_pattern(self.sample_rate) * volume, self.sample_rate, loop=True)
                    self.using_fallback = True
                except Exception as e:
                    logger.error(f"Beep fallback failed: {e}")
                    return False

            self.is_playing = True
            self._generation += 1
            self._timer = self.timer_factory(duration, self._expire, args=(self._generation,))
            self._timer.daemon = True
            self._timer.start()
        return True

    def _expire(self, generation):
        with self._lock:
            if generation != self._generation:
                return
        logger.info("Alarm duration reached")
        self.stop()

    def stop(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            if not self.is_playing:
                return
            self.is_playing = False
            try:
                self._get_player().stop()
            except Exception as e:
                logger.error(f"Error stopping alarm audio: {e}")
        logger.info("Alarm audio stopped")
