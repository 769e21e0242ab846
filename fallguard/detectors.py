"""
Fall and impact detectors
Turn the noisy per-sample magnitude stream into a debounced stream of
discrete detection events
"""

import logging
import threading
from typing import Callable, List, Optional

from .config import (
    FALL_DETECTION_THRESHOLD,
    FREE_FALL_DURATION_MS,
    FREE_FALL_THRESHOLD,
    GYROSCOPE_SENSITIVITY,
    IMPACT_CONFIRMATION_COUNT,
    IMPACT_COOLDOWN_MS,
    IMPACT_DETECTION_THRESHOLD,
)
from .models import DetectionEvent, DetectionKind, SensorSnapshot

logger = logging.getLogger(__name__)

DetectionListener = Callable[[DetectionEvent], None]


class DetectionBroadcaster:
    """
    Delivers detection events to every subscriber; a failing subscriber never
    reaches the detector that raised the event
    """

    def __init__(self):
        self._listeners: List[DetectionListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: DetectionListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: DetectionEvent):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Detection listener failed for {event.kind.value}")


class _FreeFallWindow:
    __slots__ = ("armed_at", "emissions_at_arm", "peak", "timer")

    def __init__(self, armed_at, emissions_at_arm):
        self.armed_at = armed_at
        self.emissions_at_arm = emissions_at_arm
        self.peak = None
        self.timer = None


class FallDetector:
    """
    Free fall followed by impact

    Every sample below the free-fall threshold arms its own window timer.
    When a window expires it looks at the peak magnitude received since it
    was armed; above the fall threshold it emits FALL. Windows armed during
    the same physical fall share one event: a window does not emit if a FALL
    was already emitted after it was armed.
    """

    def __init__(
        self,
        emit: Callable[[DetectionEvent], None],
        free_fall_threshold=FREE_FALL_THRESHOLD,
        fall_threshold=FALL_DETECTION_THRESHOLD,
        window_ms=FREE_FALL_DURATION_MS,
        timer_factory=threading.Timer,
    ):
        self.emit = emit
        self.free_fall_threshold = free_fall_threshold
        self.fall_threshold = fall_threshold
        self.window_seconds = window_ms / 1000.0
        self.timer_factory = timer_factory

        self._lock = threading.Lock()
        self._windows: List[_FreeFallWindow] = []
        self._emissions = 0

    @property
    def pending_windows(self) -> int:
        with self._lock:
            return len(self._windows)

    def process(self, snapshot: SensorSnapshot):
        magnitude = snapshot.magnitude
        with self._lock:
            for window in self._windows:
                if window.peak is None or magnitude > window.peak:
                    window.peak = magnitude

            if magnitude >= self.free_fall_threshold:
                return

            window = _FreeFallWindow(snapshot.sample.timestamp, self._emissions)
            self._windows.append(window)

        timer = self.timer_factory(self.window_seconds, self._on_window_expired, args=(window,))
        timer.daemon = True
        window.timer = timer
        timer.start()

    def _on_window_expired(self, window: _FreeFallWindow):
        with self._lock:
            if window not in self._windows:
                return
            self._windows.remove(window)
            confirmed = (
                window.peak is not None
                and window.peak > self.fall_threshold
                and self._emissions == window.emissions_at_arm
            )
            if confirmed:
                self._emissions += 1

        if confirmed:
            logger.debug(f"Fall detected: peak={window.peak:.2f} after free fall at {window.armed_at:.3f}")
            self.emit(DetectionEvent(DetectionKind.FALL, window.armed_at))

    def reset(self):
        with self._lock:
            windows, self._windows = self._windows, []
        for window in windows:
            if window.timer is not None:
                window.timer.cancel()


class ImpactDetector:
    """
    Baseline deviation with consecutive-reading confirmation and cooldown

    A reading counts as "high" when its deviation from the baseline exceeds
    the impact threshold while the gyroscope shows the device is moving.
    High readings increment a counter, normal readings decrement it (never
    below zero). Reaching the confirmation count emits IMPACT. Samples within
    the cooldown after a confirmed impact are ignored entirely.
    """

    def __init__(
        self,
        emit: Callable[[DetectionEvent], None],
        threshold=IMPACT_DETECTION_THRESHOLD,
        gyro_threshold=GYROSCOPE_SENSITIVITY,
        confirmation_count=IMPACT_CONFIRMATION_COUNT,
        cooldown_ms=IMPACT_COOLDOWN_MS,
    ):
        self.emit = emit
        self.threshold = threshold
        self.gyro_threshold = gyro_threshold
        self.confirmation_count = confirmation_count
        self.cooldown_seconds = cooldown_ms / 1000.0

        self.consecutive_high_readings = 0
        self.last_impact_time: Optional[float] = None

    def in_cooldown(self, now: float) -> bool:
        return self.last_impact_time is not None and now - self.last_impact_time < self.cooldown_seconds

    def process(self, snapshot: SensorSnapshot) -> Optional[DetectionEvent]:
        now = snapshot.sample.timestamp
        if self.in_cooldown(now):
            return None

        change = snapshot.magnitude_change
        is_moving = snapshot.sample.gyro_magnitude > self.gyro_threshold

        if change > self.threshold and is_moving:
            self.consecutive_high_readings += 1
            if self.consecutive_high_readings >= self.confirmation_count:
                self.consecutive_high_readings = 0
                self.last_impact_time = now
                logger.debug(
                    f"Impact detected: magnitude={snapshot.magnitude:.2f}, "
                    f"baseline={snapshot.baseline:.2f}, change={change:.2f}"
                )
                event = DetectionEvent(DetectionKind.IMPACT, now)
                self.emit(event)
                return event
        elif self.consecutive_high_readings > 0:
            self.consecutive_high_readings -= 1
        return None

    def reset(self):
        self.consecutive_high_readings = 0
        self.last_impact_time = None


class EventDetector:
    """
    Runs the fall and impact detectors side by side over the same snapshots
    and broadcasts their events
    """

    def __init__(self, fall_enabled=True, impact_enabled=True, timer_factory=threading.Timer, **thresholds):
        self.events = DetectionBroadcaster()
        self.fall_enabled = fall_enabled
        self.impact_enabled = impact_enabled

        self.fall_detector = FallDetector(
            self.events.publish,
            free_fall_threshold=thresholds.get("free_fall_threshold", FREE_FALL_THRESHOLD),
            fall_threshold=thresholds.get("fall_threshold", FALL_DETECTION_THRESHOLD),
            window_ms=thresholds.get("free_fall_duration_ms", FREE_FALL_DURATION_MS),
            timer_factory=timer_factory,
        )
        self.impact_detector = ImpactDetector(
            self.events.publish,
            threshold=thresholds.get("impact_threshold", IMPACT_DETECTION_THRESHOLD),
            gyro_threshold=thresholds.get("gyro_threshold", GYROSCOPE_SENSITIVITY),
            confirmation_count=thresholds.get("confirmation_count", IMPACT_CONFIRMATION_COUNT),
            cooldown_ms=thresholds.get("impact_cooldown_ms", IMPACT_COOLDOWN_MS),
        )

    def subscribe(self, listener: DetectionListener):
        return self.events.subscribe(listener)

    def process(self, snapshot: SensorSnapshot):
        if self.fall_enabled:
            self.fall_detector.process(snapshot)
        if self.impact_enabled:
            self.impact_detector.process(snapshot)

    def reset(self):
        self.fall_detector.reset()
        self.impact_detector.reset()
