"""
Main FallGuard monitor
Wires sensor capture, signal processing, detection and emergency response
for one execution context
"""

import logging
import threading
import time
from collections import Counter
from typing import Optional

from .config import (
    BACKGROUND_CHECK_INTERVAL_SECONDS,
    INACTIVITY_THRESHOLD_HOURS,
    KEY_LAST_CHECK_IN,
)
from .detectors import EventDetector
from .emergency_response import EmergencyResponseOrchestrator
from .models import Alert, AlertSeverity, AlertType, DetectionEvent
from .sensor_capture import CaptureStatus, SensorCapture, SensorStream
from .signal_processing import SignalProcessor
from .storage import ConfigStore, Settings

logger = logging.getLogger(__name__)


class EmergencyMonitor:
    """
    Runs the complete pipeline from motion samples to emergency response

    Foreground and background monitors each own one of these; they only
    share the coordinator their orchestrators were built with.
    """

    def __init__(
        self,
        stream: SensorStream,
        store: ConfigStore,
        orchestrator: EmergencyResponseOrchestrator,
        clock=time.time,
        timer_factory=threading.Timer,
        background_interval=BACKGROUND_CHECK_INTERVAL_SECONDS,
        inactivity_threshold_hours=INACTIVITY_THRESHOLD_HOURS,
    ):
        self.stream = stream
        self.store = store
        self.orchestrator = orchestrator
        self.clock = clock
        self.timer_factory = timer_factory
        self.background_interval = background_interval
        self.inactivity_threshold_seconds = inactivity_threshold_hours * 3600

        self.settings = Settings.load(store)
        self.processor = SignalProcessor()
        if orchestrator.snapshot_provider is None:
            orchestrator.snapshot_provider = self.processor.current_snapshot

        self.detection_counts = Counter()
        self.last_detection: Optional[DetectionEvent] = None
        self.is_monitoring = False
        self._background_timer = None
        self._snapshot_listener = None
        self._build_pipeline()

        logger.info(f"Emergency monitor initialized ({orchestrator.name})")

    def _build_pipeline(self):
        self.detector = EventDetector(
            fall_enabled=self.settings.fall_detection_enabled,
            impact_enabled=self.settings.impact_detection_enabled,
            timer_factory=self.timer_factory,
        )
        self.detector.subscribe(self._record_detection)
        self.detector.subscribe(self.orchestrator.handle_detection)

        if self._snapshot_listener is not None:
            self.processor.remove_listener(self._snapshot_listener)
        self._snapshot_listener = self.detector.process
        self.processor.add_listener(self._snapshot_listener)

        self.capture = SensorCapture(
            self.stream, self.processor.ingest, sampling_rate=self.settings.sampling_rate
        )
        self.capture.add_status_listener(self._on_capture_status)

    def _record_detection(self, event: DetectionEvent):
        self.detection_counts[event.kind.value] += 1
        self.last_detection = event
        logger.warning(f"{event.kind.value.upper()} detected at {event.timestamp:.3f}")

    def _on_capture_status(self, status: CaptureStatus, error):
        if status is CaptureStatus.SENSOR_UNAVAILABLE and self.is_monitoring:
            logger.error(f"Monitoring stopped, sensor unavailable: {error}")
            self.stop()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> bool:
        """
        Start monitoring. Raises SensorUnavailable when the stream cannot be used.
        """
        if self.is_monitoring:
            return True
        if not self.settings.app_enabled:
            logger.info("Monitoring not started: application disabled")
            return False

        self.capture.start()
        self.is_monitoring = True
        if self.settings.inactivity_detection_enabled:
            self._schedule_background_check()
        logger.info("Monitoring started")
        return True

    def stop(self):
        if not self.is_monitoring:
            return
        self.is_monitoring = False
        self.capture.stop()
        self.detector.reset()
        self.processor.reset()
        if self._background_timer is not None:
            self._background_timer.cancel()
            self._background_timer = None
        logger.info("Monitoring stopped")

    def restart_with_new_settings(self) -> bool:
        was_monitoring = self.is_monitoring
        self.stop()
        self.settings = Settings.load(self.store)
        self._build_pipeline()
        logger.info("Monitor settings reloaded")
        if was_monitoring:
            return self.start()
        return False

    # ------------------------------------------------------------------
    # Background checks
    # ------------------------------------------------------------------
    def check_in(self):
        """The user is fine; restarts the inactivity window"""
        self.store.set_int(KEY_LAST_CHECK_IN, int(self.clock()))

    def seconds_since_check_in(self) -> Optional[float]:
        last = self.store.get_int(KEY_LAST_CHECK_IN)
        if last is None:
            return None
        return self.clock() - last

    def _schedule_background_check(self):
        self._background_timer = self.timer_factory(self.background_interval, self._background_tick)
        self._background_timer.daemon = True
        self._background_timer.start()

    def _background_tick(self):
        try:
            self.perform_background_check()
        except Exception:
            logger.exception("Background check failed")
        if self.is_monitoring:
            self._schedule_background_check()

    def perform_background_check(self) -> Optional[Alert]:
        """
        Raise an inactivity alert when the user has not checked in for too long
        """
        settings = Settings.load(self.store)
        if not settings.inactivity_detection_enabled:
            return None

        elapsed = self.seconds_since_check_in()
        if elapsed is None:
            # First run: start the window now
            self.check_in()
            return None
        if elapsed < self.inactivity_threshold_seconds:
            return None

        hours = elapsed / 3600
        logger.warning(f"No check-in for {hours:.1f} hours")
        alert = self.orchestrator.respond(
            AlertType.INACTIVITY,
            custom_message=f"No activity detected for {hours:.0f} hours.",
            severity=AlertSeverity.HIGH,
        )
        if alert is not None:
            self.check_in()
        return alert

    # ------------------------------------------------------------------
    def get_status(self):
        """
        Get current monitor status
        """
        snapshot = self.processor.current_snapshot()
        return {
            "context": self.orchestrator.name,
            "is_monitoring": self.is_monitoring,
            "sensor_status": self.capture.status.value,
            "samples_processed": self.capture.processed_samples,
            "samples_dropped": self.capture.dropped_samples,
            "baseline": self.processor.baseline,
            "magnitude": snapshot.magnitude if snapshot else None,
            "detections": dict(self.detection_counts),
            "emergency_active": self.orchestrator.is_active,
            "countdown_remaining": self.orchestrator.countdown_remaining,
            "cooldown_remaining_seconds": self.orchestrator.cooldown_remaining_seconds,
            "seconds_since_check_in": self.seconds_since_check_in(),
        }
