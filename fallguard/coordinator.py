"""
Process-wide emergency coordination

Foreground and background monitors never share a call stack; the only thing
they share is one EmergencyCoordinator, constructed at startup and passed to
every collaborator that can start or cancel an emergency response.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .config import CANCELLATION_GRACE_SECONDS, NEW_EMERGENCY_COOLDOWN_SECONDS
from .errors import CoordinatorConflict

logger = logging.getLogger(__name__)

StateListener = Callable[[bool], None]


@dataclass(frozen=True)
class EmergencyState:
    is_active: bool = False
    is_cancelled: bool = False
    active_alert_id: Optional[str] = None
    last_cancellation_time: Optional[float] = None


class EmergencyCoordinator:
    """
    Arbitrates whether an emergency is active, just cancelled or cooling down

    All mutations go through start/cancel/complete. Cancel and complete only
    act when the given alert id is the active one (or nothing is active), so
    a stale or duplicate call from another context is a no-op.
    """

    def __init__(
        self,
        clock=time.time,
        timer_factory=threading.Timer,
        grace_seconds=CANCELLATION_GRACE_SECONDS,
        cooldown_seconds=NEW_EMERGENCY_COOLDOWN_SECONDS,
    ):
        self.clock = clock
        self.timer_factory = timer_factory
        self.grace_seconds = grace_seconds
        self.cooldown_seconds = cooldown_seconds

        self._lock = threading.RLock()
        self._state = EmergencyState()
        self._cancel_generation = 0
        self._grace_timer = None
        self._listeners: List[StateListener] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    @property
    def state(self) -> EmergencyState:
        with self._lock:
            return self._state

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    @property
    def is_cancelled(self) -> bool:
        return self.state.is_cancelled

    @property
    def active_alert_id(self) -> Optional[str]:
        return self.state.active_alert_id

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def remove():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def _broadcast(self, active: bool):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(active)
            except Exception:
                logger.exception("Emergency state listener failed")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def _owns(self, alert_id) -> bool:
        active = self._state.active_alert_id
        return active is None or active == alert_id

    def _activate(self, alert_id):
        self._state = EmergencyState(
            is_active=True,
            is_cancelled=False,
            active_alert_id=alert_id,
            last_cancellation_time=self._state.last_cancellation_time,
        )

    def start_emergency(self, alert_id: str):
        logger.info(f"EmergencyCoordinator: starting emergency {alert_id}")
        with self._lock:
            self._activate(alert_id)
        self._broadcast(True)

    def try_start_emergency(self, alert_id: str):
        """
        Start only if no other alert is active or in its cancel grace period
        Raises CoordinatorConflict otherwise
        """
        with self._lock:
            state = self._state
            if (state.is_active and state.active_alert_id != alert_id) or state.is_cancelled:
                raise CoordinatorConflict(
                    f"Cannot start {alert_id}: active={state.active_alert_id}, "
                    f"cancelled={state.is_cancelled}"
                )
            logger.info(f"EmergencyCoordinator: starting emergency {alert_id}")
            self._activate(alert_id)
        self._broadcast(True)

    def cancel_emergency(self, alert_id: str) -> bool:
        logger.info(f"EmergencyCoordinator: cancelling emergency {alert_id}")
        with self._lock:
            if not self._owns(alert_id):
                logger.info(
                    f"Ignoring cancel for {alert_id}: {self._state.active_alert_id} is active"
                )
                return False
            self._state = EmergencyState(
                is_active=False,
                is_cancelled=True,
                active_alert_id=None,
                last_cancellation_time=self.clock(),
            )
            self._cancel_generation += 1
            generation = self._cancel_generation
            if self._grace_timer is not None:
                self._grace_timer.cancel()
            self._grace_timer = self.timer_factory(
                self.grace_seconds, self._clear_cancelled, args=(generation,)
            )
            self._grace_timer.daemon = True
            self._grace_timer.start()
        self._broadcast(False)
        return True

    def _clear_cancelled(self, generation: int):
        with self._lock:
            if generation != self._cancel_generation or not self._state.is_cancelled:
                return
            self._state = EmergencyState(
                is_active=self._state.is_active,
                is_cancelled=False,
                active_alert_id=self._state.active_alert_id,
                last_cancellation_time=self._state.last_cancellation_time,
            )
            self._grace_timer = None

    def complete_emergency(self, alert_id: str) -> bool:
        logger.info(f"EmergencyCoordinator: completing emergency {alert_id}")
        with self._lock:
            if not self._owns(alert_id):
                logger.info(
                    f"Ignoring complete for {alert_id}: {self._state.active_alert_id} is active"
                )
                return False
            self._state = EmergencyState(
                is_active=False,
                is_cancelled=False,
                active_alert_id=None,
                last_cancellation_time=self._state.last_cancellation_time,
            )
        self._broadcast(False)
        return True

    def can_start_new_emergency(self) -> bool:
        last = self.state.last_cancellation_time
        if last is None:
            return True
        return self.clock() - last >= self.cooldown_seconds

    def seconds_since_cancellation(self) -> float:
        last = self.state.last_cancellation_time
        if last is None:
            return 0.0
        return self.clock() - last

    def reset_state(self):
        """Force-clear everything (diagnostics, error recovery, tests)."""
        logger.info("EmergencyCoordinator: resetting all state")
        with self._lock:
            if self._grace_timer is not None:
                self._grace_timer.cancel()
                self._grace_timer = None
            self._cancel_generation += 1
            self._state = EmergencyState()
        self._broadcast(False)
