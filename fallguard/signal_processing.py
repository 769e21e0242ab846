"""
Signal processing for motion-sensor streams
Computes per-sample magnitude, keeps rolling magnitude buffers and derives
an outlier-resistant baseline of the resting magnitude
"""

import logging
import math
from collections import deque
from typing import Callable, List, Optional

import numpy as np

from .config import (
    BASELINE_MIN_SAMPLES,
    BASELINE_WINDOW_SIZE,
    CALIBRATION_MIN_SAMPLES,
    DISPLAY_BUFFER_SIZE,
    EARTH_GRAVITY,
)
from .models import SensorSample, SensorSnapshot

logger = logging.getLogger(__name__)


class RollingMagnitudeBuffer:
    """
    Fixed-capacity FIFO of recent magnitudes; the oldest value is evicted on overflow
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._values = deque(maxlen=capacity)

    def append(self, value: float):
        self._values.append(value)

    def clear(self):
        self._values.clear()

    def last(self) -> Optional[float]:
        return self._values[-1] if self._values else None

    def to_array(self) -> np.ndarray:
        return np.fromiter(self._values, dtype=np.float64, count=len(self._values))

    def __len__(self):
        return len(self._values)

    def __iter__(self):
        return iter(list(self._values))


def trimmed_baseline(magnitudes) -> float:
    """
    Mean of the interquartile slice [floor(0.25n), ceil(0.75n)) of the sorted
    magnitudes. Spikes in either tail do not move the estimate.
    """
    ordered = np.sort(np.asarray(magnitudes, dtype=np.float64))
    n = len(ordered)
    if n == 0:
        raise ValueError("baseline needs at least one magnitude")
    start = int(math.floor(n * 0.25))
    end = int(math.ceil(n * 0.75))
    return float(np.mean(ordered[start:end]))


class SignalProcessor:
    """
    Turns raw sensor samples into snapshots (magnitude + baseline)
    Designed to be fed one sample at a time from the sensor stream
    """

    def __init__(
        self,
        display_size=DISPLAY_BUFFER_SIZE,
        baseline_size=BASELINE_WINDOW_SIZE,
        baseline_min_samples=BASELINE_MIN_SAMPLES,
    ):
        self.display_buffer = RollingMagnitudeBuffer(display_size)
        self.baseline_buffer = RollingMagnitudeBuffer(baseline_size)
        self.baseline_min_samples = baseline_min_samples
        self.baseline = EARTH_GRAVITY

        self.last_sample: Optional[SensorSample] = None
        self.rejected_samples = 0
        self._listeners: List[Callable[[SensorSnapshot], None]] = []

    def add_listener(self, listener: Callable[[SensorSnapshot], None]):
        self._listeners.append(listener)

    def remove_listener(self, listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def ingest(self, sample: SensorSample) -> Optional[SensorSnapshot]:
        """
        Process one sample. Returns the derived snapshot, or None when the
        sample was rejected (non-finite values).
        """
        if sample is None or not sample.is_finite():
            self.rejected_samples += 1
            logger.debug("Rejected non-finite sensor sample")
            return None

        magnitude = sample.magnitude
        self.display_buffer.append(magnitude)
        self.baseline_buffer.append(magnitude)

        if len(self.baseline_buffer) >= self.baseline_min_samples:
            self.baseline = trimmed_baseline(self.baseline_buffer.to_array())

        self.last_sample = sample
        snapshot = SensorSnapshot(sample=sample, magnitude=magnitude, baseline=self.baseline)

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Sensor snapshot listener failed: {e}")

        return snapshot

    def calibrate_baseline(self) -> bool:
        """
        Set the baseline to the plain mean of recent magnitudes
        Meant to be called while the device is stationary
        """
        if len(self.baseline_buffer) < CALIBRATION_MIN_SAMPLES:
            return False
        self.baseline = float(np.mean(self.baseline_buffer.to_array()))
        logger.info(f"Baseline calibrated to: {self.baseline:.3f}")
        return True

    def current_snapshot(self) -> Optional[SensorSnapshot]:
        if self.last_sample is None:
            return None
        return SensorSnapshot(
            sample=self.last_sample,
            magnitude=self.last_sample.magnitude,
            baseline=self.baseline,
        )

    def magnitude_change(self) -> float:
        if self.last_sample is None:
            return 0.0
        return abs(self.last_sample.magnitude - self.baseline)

    def reset(self):
        """
        Clear buffers and restore the gravity baseline (monitoring stopped)
        """
        self.display_buffer.clear()
        self.baseline_buffer.clear()
        self.baseline = EARTH_GRAVITY
        self.last_sample = None
