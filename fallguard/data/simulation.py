import logging
import threading
import time

import numpy as np

from fallguard.config import EARTH_GRAVITY, SENSOR_SAMPLING_RATE
from fallguard.models import LocationFix, SensorSample

logger = logging.getLogger(__name__)

SCENARIOS = ("rest", "fall", "impact")


def _rest(n, rng):
    trace = np.zeros((n, 6))
    trace[:, :3] = rng.normal(0.0, 0.05, size=(n, 3))
    trace[:, 2] += EARTH_GRAVITY
    trace[:, 3:] = rng.normal(0.0, 0.01, size=(n, 3))
    return trace


def generate_trace(scenario="rest", sampling_rate=SENSOR_SAMPLING_RATE, lead_in_seconds=2.0, seed=None):
    """
    Synthetic accelerometer (m/s^2) + gyroscope (rad/s) trace, one row per sample:
    ax, ay, az, gx, gy, gz.

    - rest:   device lying still
    - fall:   rest, ~0.4s near-zero free fall, a short hard impact with rotation,
              then the device lying on its side
    - impact: rest, then a sustained high-deviation jolt with rotation
    """
    if scenario not in SCENARIOS:
        raise ValueError(f"Unknown scenario '{scenario}', expected one of {SCENARIOS}")

    rng = np.random.default_rng(seed)
    lead_in = _rest(int(lead_in_seconds * sampling_rate), rng)
    if scenario == "rest":
        return lead_in

    if scenario == "fall":
        free_fall = rng.normal(0.0, 0.3, size=(int(0.4 * sampling_rate), 6))
        free_fall[:, 3:] += 1.0
        spike = np.tile([20.0, 10.0, 18.0, 3.0, 2.5, 1.5], (3, 1))
        lying = _rest(sampling_rate, rng)
        lying[:, [0, 2]] = lying[:, [2, 0]]
        return np.vstack([lead_in, free_fall, spike, lying])

    jolt = np.tile([6.0, 4.0, EARTH_GRAVITY + 9.0, 1.5, 1.0, 0.5], (5, 1))
    jolt += rng.normal(0.0, 0.2, size=jolt.shape)
    return np.vstack([lead_in, jolt, _rest(sampling_rate, rng)])


class _Subscription:
    def __init__(self):
        self.cancelled = threading.Event()

    def cancel(self):
        self.cancelled.set()


class SimulatedSensorStream:
    """
    SensorStream that replays a scenario trace then keeps reporting rest samples
    Set realtime=False to push samples as fast as they are consumed (tests)
    """

    def __init__(self, scenario="rest", realtime=True, seed=None, loop_rest=True, clock=time.time):
        self.scenario = scenario
        self.realtime = realtime
        self.seed = seed
        self.loop_rest = loop_rest
        self.clock = clock
        self.samples_emitted = 0

    def subscribe(self, on_sample, on_error, sampling_period):
        sampling_rate = max(1, int(round(1.0 / sampling_period)))
        trace = generate_trace(self.scenario, sampling_rate, seed=self.seed)
        subscription = _Subscription()
        thread = threading.Thread(
            target=self._run,
            args=(trace, sampling_period, on_sample, on_error, subscription),
            name="simulated-sensor",
            daemon=True,
        )
        thread.start()
        logger.info(f"Simulating '{self.scenario}' scenario at {sampling_rate} Hz")
        return subscription

    def _run(self, trace, period, on_sample, on_error, subscription):
        rng = np.random.default_rng(self.seed)
        start = self.clock()
        index = 0
        try:
            while not subscription.cancelled.is_set():
                if index < len(trace):
                    row = trace[index]
                elif self.loop_rest:
                    row = _rest(1, rng)[0]
                else:
                    break
                on_sample(SensorSample(start + index * period, *(float(v) for v in row)))
                self.samples_emitted += 1
                index += 1
                if self.realtime and subscription.cancelled.wait(period):
                    break
        except Exception as e:
            on_error(e)


class StaticLocationProvider:
    """LocationProvider for a fixed position (no GPS attached)"""

    def __init__(self, latitude=None, longitude=None, address=None):
        self.latitude = latitude
        self.longitude = longitude
        self.address = address

    def _fix(self):
        if self.latitude is None or self.longitude is None:
            return None
        return LocationFix(self.latitude, self.longitude, time.time(), accuracy=0.0)

    def get_current_fix(self):
        return self._fix()

    def get_last_known_fix(self):
        return self._fix()

    def reverse_geocode(self, latitude, longitude):
        return self.address


class ConsoleSmsGateway:
    """SmsGateway that logs messages instead of sending them"""

    def __init__(self):
        self.outbox = []

    def send_batch(self, message, recipients):
        for number in recipients:
            logger.warning(f"[SMS -> {number}] {message}")
            self.outbox.append((number, message))
        return {number: True for number in recipients}


class ConsoleVibrationMotor:
    def has_vibrator(self):
        return True

    def vibrate(self, pattern):
        logger.debug(f"[vibrate] {pattern}")

    def cancel(self):
        logger.debug("[vibrate] cancel")


class ConsoleTorch:
    def is_available(self):
        return True

    def enable(self):
        logger.debug("[torch] on")

    def disable(self):
        logger.debug("[torch] off")


class ConsoleAudioPlayer:
    """Stand-in for the sounddevice module when running silently"""

    def play(self, data, samplerate, loop=False):
        logger.warning(f"[siren] playing {len(data) / samplerate:.1f}s clip (loop={loop})")

    def stop(self):
        logger.info("[siren] stopped")
