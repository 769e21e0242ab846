"""
Emergency response orchestration
Turns a confirmed detection into local alarms, a cancellable countdown and an
SMS alert to the user's emergency contacts
"""

import datetime
import logging
import threading
import time
from typing import Callable, Optional

from .actuators.controller import AlarmController
from .config import (
    ALARM_DURATION_SECONDS,
    CANCELLATION_MESSAGE_WINDOW_SECONDS,
    DEFAULT_ALARM_VOLUME,
    DETECTION_COOLDOWN_SECONDS,
)
from .coordinator import EmergencyCoordinator
from .errors import CoordinatorConflict, DispatchFailure
from .models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    AlertType,
    DetectionEvent,
    SensorSnapshot,
    generate_alert_id,
)
from .services.location import LocationResolver
from .services.sms import SmsDispatcher
from .storage import AlertHistory, ConfigStore, ContactBook, Settings

logger = logging.getLogger(__name__)


class EmergencyResponseOrchestrator:
    """
    Per-alert state machine: Triggered -> alarms -> countdown -> Sent | Cancelled | Failed

    One instance per execution context. Instances in different contexts only
    talk to each other through the shared EmergencyCoordinator.
    """

    def __init__(
        self,
        coordinator: EmergencyCoordinator,
        store: ConfigStore,
        contacts: ContactBook,
        history: AlertHistory,
        location_resolver: Optional[LocationResolver],
        sms_dispatcher: SmsDispatcher,
        alarms: AlarmController,
        countdown_seconds=None,
        detection_cooldown_seconds=DETECTION_COOLDOWN_SECONDS,
        alarm_duration=ALARM_DURATION_SECONDS,
        clock=time.time,
        timer_factory=threading.Timer,
        snapshot_provider: Optional[Callable[[], Optional[SensorSnapshot]]] = None,
        log_file=None,
        name="foreground",
    ):
        self.coordinator = coordinator
        self.store = store
        self.contacts = contacts
        self.history = history
        self.location_resolver = location_resolver
        self.sms = sms_dispatcher
        self.alarms = alarms
        self.countdown_seconds = countdown_seconds
        self.detection_cooldown_seconds = detection_cooldown_seconds
        self.alarm_duration = alarm_duration
        self.clock = clock
        self.timer_factory = timer_factory
        self.snapshot_provider = snapshot_provider
        self.log_file = log_file
        self.name = name

        self._lock = threading.RLock()
        self._alert: Optional[Alert] = None
        self._countdown_timer = None
        self._countdown_deadline: Optional[float] = None
        self._countdown_generation = 0
        self._last_cancellation_time: Optional[float] = None
        self._last_sent_alert: Optional[Alert] = None

        self._remove_listener = coordinator.add_listener(self._on_coordinator_state)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._alert is not None

    @property
    def current_alert(self) -> Optional[Alert]:
        with self._lock:
            return self._alert

    @property
    def last_sent_alert(self) -> Optional[Alert]:
        return self._last_sent_alert

    @property
    def countdown_remaining(self) -> int:
        with self._lock:
            if self._countdown_deadline is None:
                return 0
            return max(0, int(round(self._countdown_deadline - self.clock())))

    @property
    def cooldown_remaining_seconds(self) -> float:
        with self._lock:
            if self._last_cancellation_time is None:
                return 0.0
            elapsed = self.clock() - self._last_cancellation_time
        return max(0.0, self.detection_cooldown_seconds - elapsed)

    @property
    def is_in_cooldown(self) -> bool:
        return self.cooldown_remaining_seconds > 0

    def reset_cooldown(self):
        with self._lock:
            self._last_cancellation_time = None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def handle_detection(self, event: DetectionEvent) -> threading.Thread:
        """
        Detection listener. The response runs on its own thread so the
        detection pipeline keeps consuming samples while location and SMS block.
        """
        thread = threading.Thread(
            target=self.respond,
            args=(AlertType.from_detection(event.kind),),
            name=f"{self.name}-response",
            daemon=True,
        )
        thread.start()
        return thread

    def trigger_manual(self, alert_type=AlertType.MANUAL, custom_message="Manual emergency button pressed",
                       severity=AlertSeverity.CRITICAL) -> Optional[Alert]:
        """Panic button: clears the detection cooldown, never overrides an active emergency"""
        self.reset_cooldown()
        return self.respond(alert_type, custom_message=custom_message, severity=severity, manual=True)

    def _passes_gate(self, settings: Settings, manual: bool) -> bool:
        if not settings.app_enabled:
            logger.info("Emergency response skipped: application disabled")
            return False
        with self._lock:
            if self._alert is not None:
                logger.info(f"Emergency response skipped: alert {self._alert.id} already active here")
                return False
        state = self.coordinator.state
        if state.is_active:
            logger.info(f"Emergency response skipped: alert {state.active_alert_id} is active")
            return False
        if state.is_cancelled:
            logger.info("Emergency response skipped: an emergency was just cancelled")
            return False
        if manual:
            return True
        if not self.coordinator.can_start_new_emergency():
            logger.info(
                f"Emergency response skipped: cancelled "
                f"{self.coordinator.seconds_since_cancellation():.0f}s ago"
            )
            return False
        if self.is_in_cooldown:
            logger.info(
                f"Emergency response skipped: detection cooldown, "
                f"{self.cooldown_remaining_seconds:.0f}s remaining"
            )
            return False
        return True

    def respond(self, alert_type: AlertType, custom_message=None, severity=AlertSeverity.HIGH,
                manual=False) -> Optional[Alert]:
        """
        Run the response workflow up to the armed countdown
        Returns the triggered alert, or None when gated, without contacts or failed
        """
        settings = Settings.load(self.store)
        if not self._passes_gate(settings, manual):
            return None

        contacts = self.contacts.enabled()
        if not contacts:
            logger.warning("Emergency response aborted: no enabled emergency contacts")
            return None

        alert = None
        try:
            fix = self.location_resolver.resolve() if self.location_resolver else None
            snapshot = self.snapshot_provider() if self.snapshot_provider else None
            now = self.clock()
            alert = Alert(
                id=generate_alert_id(now),
                type=alert_type,
                severity=severity,
                status=AlertStatus.TRIGGERED,
                timestamp=now,
                custom_message=custom_message,
                sensor_data=snapshot.to_dict() if snapshot is not None else None,
                latitude=fix.latitude if fix else None,
                longitude=fix.longitude if fix else None,
                address=fix.address if fix else None,
            )

            with self._lock:
                if self._alert is not None:
                    raise CoordinatorConflict(f"Alert {self._alert.id} became active")
                self._alert = alert
            self.history.save(alert)
            try:
                self.coordinator.try_start_emergency(alert.id)
            except CoordinatorConflict:
                with self._lock:
                    if self._alert is alert:
                        self._alert = None
                stored = self.history.get(alert.id)
                # A cancel may already have resolved this record
                if stored is not None and stored.status is AlertStatus.TRIGGERED:
                    self.history.delete(alert.id)
                raise

            if not self._is_current(alert.id):
                logger.info(f"Alert {alert.id} was cancelled before alarms started")
                return None

            logger.critical(f"EMERGENCY TRIGGERED: {alert_type.description} (alert {alert.id})")
            self._log_incident(alert)
            self.alarms.settings = settings
            self.alarms.start_all(volume=DEFAULT_ALARM_VOLUME, duration=self.alarm_duration)

            countdown = self.countdown_seconds if self.countdown_seconds is not None else settings.countdown_seconds
            if not self._arm_countdown(alert, countdown):
                logger.info(f"Alert {alert.id} was cancelled while alarms started")
                self.alarms.stop_all()
                return None
            return alert

        except CoordinatorConflict as e:
            logger.info(f"Emergency response skipped: {e}")
            return None
        except Exception as e:
            logger.exception(f"Emergency response failed: {e}")
            self._fail(alert)
            return None

    # ------------------------------------------------------------------
    # Countdown
    # ------------------------------------------------------------------
    def _is_current(self, alert_id) -> bool:
        with self._lock:
            return self._alert is not None and self._alert.id == alert_id

    def _arm_countdown(self, alert: Alert, seconds) -> bool:
        with self._lock:
            if self._alert is None or self._alert.id != alert.id:
                return False
            self._countdown_generation += 1
            self._countdown_deadline = self.clock() + seconds
            self._countdown_timer = self.timer_factory(
                seconds, self._on_countdown_elapsed, args=(alert.id, self._countdown_generation)
            )
            self._countdown_timer.daemon = True
            self._countdown_timer.start()
        logger.warning(f"Sending alerts in {seconds}s unless cancelled")
        return True

    def _stop_countdown(self):
        with self._lock:
            self._countdown_generation += 1
            if self._countdown_timer is not None:
                self._countdown_timer.cancel()
                self._countdown_timer = None
            self._countdown_deadline = None

    def _on_countdown_elapsed(self, alert_id, generation):
        with self._lock:
            if generation != self._countdown_generation:
                return
            self._countdown_timer = None
            self._countdown_deadline = None
        self._send_if_current(alert_id)

    def send_now(self) -> bool:
        """Skip the rest of the countdown and dispatch immediately"""
        with self._lock:
            alert = self._alert
            if alert is None:
                logger.info("No active emergency to send")
                return False
        self._stop_countdown()
        return self._send_if_current(alert.id)

    def _send_if_current(self, alert_id) -> bool:
        with self._lock:
            alert = self._alert
            if alert is None or alert.id != alert_id:
                logger.info(f"Alert {alert_id} is no longer active here, not sending")
                return False
        if self.coordinator.active_alert_id != alert_id:
            logger.info(f"Alert {alert_id} is no longer the active emergency, not sending")
            released = self._release_local(start_cooldown=False)
            if released is not None:
                self.alarms.stop_all()
                self._record(released.with_status(
                    AlertStatus.CANCELLED, resolved_at=self.clock(), resolved_by="coordinator"
                ))
            return False

        try:
            try:
                report = self.sms.send_emergency_alert(self.contacts.enabled(), alert)
                status, sent_to = AlertStatus.SENT, list(report.sent)
                logger.critical(f"EMERGENCY ALERT SENT to {len(report.sent)} contacts (alert {alert_id})")
            except DispatchFailure as e:
                logger.error(f"Emergency alert dispatch failed: {e}")
                status, sent_to = AlertStatus.FAILED, []

            with self._lock:
                still_current = self._alert is not None and self._alert.id == alert_id
                if still_current:
                    updated = alert.with_status(status, sent_to_contacts=sent_to)
                    self.history.update(updated)
                    self._alert = None
                    if status is AlertStatus.SENT:
                        self._last_sent_alert = updated
        except Exception as e:
            logger.exception(f"Error sending emergency alert: {e}")
            self._fail(alert)
            return False

        if not still_current:
            self._keep_cancellation(alert, sent_to)
            return False
        self.coordinator.complete_emergency(alert_id)
        return status is AlertStatus.SENT

    def _keep_cancellation(self, alert: Alert, sent_to):
        """The alert was cancelled while its SMS was in flight; the cancellation stands."""
        logger.warning(f"Alert {alert.id} was cancelled while sending, {len(sent_to)} contacts already notified")
        stored = self.history.get(alert.id) or alert
        self._record(stored.with_status(stored.status, sent_to_contacts=sent_to))
        if sent_to:
            with self._lock:
                self._last_sent_alert = alert.with_status(AlertStatus.SENT, sent_to_contacts=sent_to)

    # ------------------------------------------------------------------
    # Cancellation and failure
    # ------------------------------------------------------------------
    def cancel(self, resolved_by="user", send_cancellation_message=False) -> bool:
        """
        Cancel the active alert. Safe to call with nothing active.
        The countdown is stopped before any actuator is touched.
        """
        alert = self._release_local(start_cooldown=True)
        if alert is None:
            logger.info("No active emergency to cancel")
            return False

        self.alarms.stop_all()
        self._record(alert.with_status(
            AlertStatus.CANCELLED, resolved_at=self.clock(), resolved_by=resolved_by
        ))
        self.coordinator.cancel_emergency(alert.id)
        logger.warning(f"Emergency {alert.id} cancelled by {resolved_by}")

        if send_cancellation_message:
            self.sms.send_cancellation(self.contacts.enabled())
        return True

    def _release_local(self, start_cooldown: bool) -> Optional[Alert]:
        with self._lock:
            alert = self._alert
            if alert is None:
                return None
            self._stop_countdown()
            self._alert = None
            if start_cooldown:
                self._last_cancellation_time = self.clock()
        return alert

    def _on_coordinator_state(self, active: bool):
        if active:
            return
        with self._lock:
            alert = self._alert
        if alert is None:
            return
        state = self.coordinator.state
        if state.is_cancelled and state.active_alert_id is None:
            # Cancelled from another context
            released = self._release_local(start_cooldown=True)
            if released is None:
                return
            self.alarms.stop_all()
            self._record(released.with_status(
                AlertStatus.CANCELLED, resolved_at=self.clock(), resolved_by="coordinator"
            ))
            logger.warning(f"Emergency {released.id} cancelled from another context")

    def _fail(self, alert: Optional[Alert]):
        if alert is not None:
            with self._lock:
                if self._alert is not None and self._alert.id == alert.id:
                    self._stop_countdown()
                    self._alert = None
        try:
            self.alarms.stop_all()
        except Exception as e:
            logger.error(f"Error stopping alarms: {e}")
        if alert is None:
            return
        self._record(alert.with_status(AlertStatus.FAILED))
        self.coordinator.complete_emergency(alert.id)

    def _record(self, alert: Alert):
        try:
            self.history.update(alert)
        except Exception as e:
            logger.error(f"Error saving alert {alert.id} to history: {e}")

    def send_cancellation_message(self) -> bool:
        """
        "Alert cancelled" SMS for the last sent alert, allowed for a limited
        time after it was sent
        """
        alert = self._last_sent_alert
        if alert is None or self.clock() - alert.timestamp > CANCELLATION_MESSAGE_WINDOW_SECONDS:
            logger.warning("Cancellation not allowed: no recent alert or outside the 10-minute window")
            return False
        contacts = self.contacts.enabled()
        if not contacts:
            logger.warning("No emergency contacts configured")
            return False
        report = self.sms.send_cancellation(contacts)
        if report.all_failed:
            logger.error("Cancellation message reached nobody")
            return False
        logger.info("Cancellation message sent")
        return True

    # ------------------------------------------------------------------
    def _log_incident(self, alert: Alert):
        if not self.log_file:
            return
        timestamp = datetime.datetime.fromtimestamp(alert.timestamp).strftime("%Y-%m-%d %H:%M:%S")
        location = f"{alert.latitude:.6f},{alert.longitude:.6f}" if alert.has_location else "unknown"
        log_entry = (
            f"[{timestamp}] EMERGENCY: {alert.type.value} ({alert.severity.value}) "
            f"alert={alert.id} context={self.name} location={location}"
        )
        try:
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(log_entry + "\n")
        except OSError as e:
            logger.error(f"Could not write emergency log: {e}")

    def close(self):
        self._remove_listener()
        self._stop_countdown()
        self.sms.shutdown()
