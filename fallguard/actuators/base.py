"""
Shared run loop for actuators that repeat a step until a deadline or stop()
"""

import logging
import threading
import time

logger = logging.getLogger(__name__)


class RepeatingActuator:
    """
    One long-lived instance per device. Starting a new run first stops the
    previous one, so two cycles never overlap on the same device.
    """

    name = "actuator"

    def __init__(self, clock=time.monotonic):
        self.clock = clock
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def is_active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _step(self, index: int) -> float:
        """Perform one step; return seconds to wait before the next one."""
        raise NotImplementedError

    def _finish(self):
        """Return the device to its idle state."""

    def _start_loop(self, duration):
        self.stop()
        with self._lock:
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event, self.clock() + duration),
                name=f"{self.name}-alarm",
                daemon=True,
            )
            self._thread.start()

    def _run(self, stop_event: threading.Event, deadline: float):
        index = 0
        try:
            while not stop_event.is_set() and self.clock() < deadline:
                delay = self._step(index)
                index += 1
                remaining = deadline - self.clock()
                if stop_event.wait(max(0.0, min(delay, remaining))):
                    break
        except Exception as e:
            logger.error(f"{self.name} alarm failed: {e}")
        finally:
            try:
                self._finish()
            except Exception as e:
                logger.error(f"Error resetting {self.name}: {e}")

    def stop(self):
        with self._lock:
            thread, self._thread = self._thread, None
            self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
