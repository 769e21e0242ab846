"""Pytest configuration and fixtures for FallGuard tests."""

import os
import sys
import threading
from unittest.mock import MagicMock

import pytest

# Add the repository root to path for testing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fallguard.coordinator import EmergencyCoordinator
from fallguard.emergency_response import EmergencyResponseOrchestrator
from fallguard.models import EmergencyContact, LocationFix, SensorSample
from fallguard.services.sms import SmsDispatcher
from fallguard.storage import AlertHistory, ConfigStore, ContactBook


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ManualTimer:
    """threading.Timer look-alike that only runs when fire() is called."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    @property
    def pending(self):
        return self.started and not self.cancelled and not self.fired

    def fire(self):
        if not self.pending:
            return False
        self.fired = True
        self.function(*self.args, **self.kwargs)
        return True


class ManualTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = ManualTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    def pending(self):
        return [t for t in self.timers if t.pending]

    def fire_all(self):
        fired = 0
        for timer in list(self.pending()):
            fired += timer.fire()
        return fired


class RecordingGateway:
    """SmsGateway that records every batch; numbers in `failing` fail."""

    def __init__(self, failing=()):
        self.calls = []
        self.failing = set(failing)

    def send_batch(self, message, recipients):
        self.calls.append((message, list(recipients)))
        return {number: number not in self.failing for number in recipients}


class BlockingGateway:
    """SmsGateway that hangs until `release` is set."""

    def __init__(self):
        self.release = threading.Event()
        self.calls = []

    def send_batch(self, message, recipients):
        self.calls.append((message, list(recipients)))
        self.release.wait(5.0)
        return {number: True for number in recipients}


def make_sample(timestamp, magnitude=9.81, gyro=0.0):
    """Sample pointing straight down with the given magnitude and rotation."""
    return SensorSample(timestamp, 0.0, 0.0, magnitude, gyro, 0.0, 0.0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return ManualTimerFactory()


@pytest.fixture
def store():
    return ConfigStore()


@pytest.fixture
def history(store):
    return AlertHistory(store)


@pytest.fixture
def contacts(store):
    book = ContactBook(store)
    book.add(EmergencyContact("c1", "Alice", "+1 555 010 0001", "sister", is_primary=True))
    book.add(EmergencyContact("c2", "Bob", "+1 555 010 0002", "friend"))
    return book


@pytest.fixture
def coordinator(clock, timers):
    return EmergencyCoordinator(clock=clock, timer_factory=timers)


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def alarms():
    return MagicMock()


@pytest.fixture
def location_resolver():
    resolver = MagicMock()
    resolver.resolve.return_value = LocationFix(52.52, 13.405, 0.0, address="Alexanderplatz, Berlin")
    return resolver


@pytest.fixture
def make_orchestrator(coordinator, store, contacts, history, location_resolver, gateway, alarms, clock, timers):
    """Factory for orchestrators sharing one coordinator (one per context)."""
    built = []

    def factory(name="foreground", **overrides):
        kwargs = dict(
            coordinator=coordinator,
            store=store,
            contacts=contacts,
            history=history,
            location_resolver=location_resolver,
            sms_dispatcher=SmsDispatcher(gateway, "Dana"),
            alarms=alarms,
            countdown_seconds=30,
            clock=clock,
            timer_factory=timers,
            name=name,
        )
        kwargs.update(overrides)
        orchestrator = EmergencyResponseOrchestrator(**kwargs)
        built.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in built:
        orchestrator.close()


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()
