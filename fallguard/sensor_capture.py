"""
Motion sensor capture
Decouples the push-based sensor stream from processing with a bounded queue
drained by a daemon thread
"""

import enum
import logging
import threading
from queue import Empty, Full, Queue
from typing import Callable, List, Optional, Protocol

from .config import SAMPLE_QUEUE_SIZE, SENSOR_SAMPLING_RATE, SENSOR_STALL_TIMEOUT
from .errors import SensorUnavailable
from .models import SensorSample

logger = logging.getLogger(__name__)


class Subscription(Protocol):
    def cancel(self): ...


class SensorStream(Protocol):
    def subscribe(
        self,
        on_sample: Callable[[SensorSample], None],
        on_error: Callable[[Exception], None],
        sampling_period: float,
    ) -> Subscription: ...


class CaptureStatus(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    SENSOR_UNAVAILABLE = "sensor_unavailable"


_STOP = object()


class SensorCapture:
    """
    Subscribes to a SensorStream and hands every sample to ``on_sample`` on
    the processing thread

    A stream error, or no sample for longer than the stall timeout, stops
    capture and moves the status to SENSOR_UNAVAILABLE.
    """

    def __init__(
        self,
        stream: SensorStream,
        on_sample: Callable[[SensorSample], None],
        sampling_rate=SENSOR_SAMPLING_RATE,
        stall_timeout=SENSOR_STALL_TIMEOUT,
        queue_size=SAMPLE_QUEUE_SIZE,
    ):
        self.stream = stream
        self.on_sample = on_sample
        self.sampling_rate = sampling_rate
        self.stall_timeout = stall_timeout

        # Thread-safe queue between the stream callback and processing
        self.sample_queue: Queue = Queue(maxsize=queue_size)

        self.status = CaptureStatus.STOPPED
        self.last_error: Optional[Exception] = None
        self.dropped_samples = 0
        self.processed_samples = 0

        self._subscription = None
        self._thread = None
        self._lock = threading.Lock()
        self._status_listeners: List[Callable[[CaptureStatus, Optional[Exception]], None]] = []

    @property
    def is_running(self) -> bool:
        return self.status is CaptureStatus.RUNNING

    def add_status_listener(self, listener):
        self._status_listeners.append(listener)

    def _set_status(self, status: CaptureStatus, error: Optional[Exception] = None):
        with self._lock:
            if self.status is status:
                return
            self.status = status
            self.last_error = error
        for listener in list(self._status_listeners):
            try:
                listener(status, error)
            except Exception as e:
                logger.error(f"Capture status listener failed: {e}")

    def _on_stream_sample(self, sample: SensorSample):
        """
        Stream callback - runs on the stream's thread
        """
        try:
            self.sample_queue.put_nowait(sample)
        except Full:
            self.dropped_samples += 1
            if self.dropped_samples % 100 == 1:
                logger.warning(f"Sample queue full, dropped {self.dropped_samples} samples")

    def _on_stream_error(self, error: Exception):
        logger.error(f"Sensor stream error: {error}")
        self._fail(SensorUnavailable(f"Sensor stream failed: {error}"))

    def _fail(self, error: SensorUnavailable):
        self._unsubscribe()
        self._set_status(CaptureStatus.SENSOR_UNAVAILABLE, error)
        try:
            self.sample_queue.put_nowait(_STOP)
        except Full:
            pass

    def _processing_loop(self):
        """
        Main processing loop - runs in background thread
        """
        while self.is_running:
            try:
                sample = self.sample_queue.get(timeout=self.stall_timeout)
            except Empty:
                if self.is_running:
                    logger.error(f"No sensor data for {self.stall_timeout}s")
                    self._fail(SensorUnavailable(f"Sensor stream silent for {self.stall_timeout}s"))
                break

            if sample is _STOP:
                break
            try:
                self.on_sample(sample)
                self.processed_samples += 1
            except Exception as e:
                logger.error(f"Error processing sensor sample: {e}")

        logger.info("Sensor processing stopped")

    def start(self):
        """
        Subscribe to the stream and start the processing thread
        Raises SensorUnavailable when the stream cannot be subscribed
        """
        if self.is_running:
            logger.warning("Sensor capture already running")
            return

        self._drain()
        try:
            self._subscription = self.stream.subscribe(
                self._on_stream_sample, self._on_stream_error, 1.0 / self.sampling_rate
            )
        except Exception as e:
            self._set_status(CaptureStatus.SENSOR_UNAVAILABLE, e)
            raise SensorUnavailable(f"Could not subscribe to sensor stream: {e}") from e

        self._set_status(CaptureStatus.RUNNING)
        self._thread = threading.Thread(target=self._processing_loop, name="sensor-processing", daemon=True)
        self._thread.start()
        logger.info(f"Sensor capture started at {self.sampling_rate} Hz")

    def _unsubscribe(self):
        with self._lock:
            subscription, self._subscription = self._subscription, None
        if subscription is not None:
            try:
                subscription.cancel()
            except Exception as e:
                logger.error(f"Error cancelling sensor subscription: {e}")

    def _drain(self):
        while True:
            try:
                self.sample_queue.get_nowait()
            except Empty:
                break

    def stop(self):
        """
        Stop capture gracefully
        """
        self._unsubscribe()
        if self.status is CaptureStatus.RUNNING:
            self._set_status(CaptureStatus.STOPPED)
        try:
            self.sample_queue.put_nowait(_STOP)
        except Full:
            pass

        thread, self._thread = self._thread, None
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        logger.info("Sensor capture stopped")
