"""Tests for the monitor pipeline, the motion simulator and the command line."""

import json
import time
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from fallguard.config import (
    KEY_APP_ENABLED,
    KEY_FALL_DETECTION_ENABLED,
    KEY_IMPACT_DETECTION_ENABLED,
    KEY_INACTIVITY_ENABLED,
    KEY_LAST_CHECK_IN,
)
from fallguard.data.simulation import SimulatedSensorStream, generate_trace
from fallguard.emergency_monitor import EmergencyMonitor
from fallguard.main import FallGuardApp, main
from fallguard.models import AlertStatus, AlertType


def wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def countdown_armed(timers):
    return any(t.interval == 30 for t in timers.pending())


class TestSimulation:
    """Test cases for the synthetic motion traces."""

    @pytest.mark.parametrize("scenario,length", [
        ("rest", 100),
        ("fall", 100 + 20 + 3 + 50),
        ("impact", 100 + 5 + 50),
    ])
    def test_trace_shapes(self, scenario, length):
        trace = generate_trace(scenario, sampling_rate=50, seed=0)
        assert trace.shape == (length, 6)

    def test_rest_is_gravity(self):
        trace = generate_trace("rest", sampling_rate=50, seed=0)
        magnitudes = np.linalg.norm(trace[:, :3], axis=1)
        assert np.all(np.abs(magnitudes - 9.81) < 1.0)

    def test_fall_contains_free_fall_and_spike(self):
        trace = generate_trace("fall", sampling_rate=50, seed=0)
        magnitudes = np.linalg.norm(trace[:, :3], axis=1)
        assert magnitudes[100:120].max() < 4.9
        assert magnitudes[120:123].min() > 24.5

    def test_unknown_scenario(self):
        with pytest.raises(ValueError):
            generate_trace("earthquake")

    def test_stream_replays_trace(self):
        """Test that a non-realtime stream delivers the whole trace then stops."""
        stream = SimulatedSensorStream("impact", realtime=False, seed=0, loop_rest=False)
        samples = []
        subscription = stream.subscribe(samples.append, pytest.fail, 0.02)
        try:
            assert wait_until(lambda: len(samples) == 155)
        finally:
            subscription.cancel()

        assert samples[1].timestamp - samples[0].timestamp == pytest.approx(0.02)


class TestEmergencyMonitor:
    """Test cases for EmergencyMonitor."""

    @pytest.fixture
    def make_monitor(self, store, make_orchestrator, clock, timers):
        built = []

        def factory(stream=None, **settings):
            for key, value in settings.items():
                store.set_bool(key, value)
            orchestrator = make_orchestrator()
            monitor = EmergencyMonitor(
                stream or MagicMock(), store, orchestrator, clock=clock, timer_factory=timers
            )
            built.append(monitor)
            return monitor

        yield factory
        for monitor in built:
            monitor.stop()

    def test_simulated_fall_raises_alert(self, make_monitor, timers, history):
        """Test the complete pipeline from a simulated fall to an armed countdown."""
        stream = SimulatedSensorStream("fall", realtime=False, seed=3, loop_rest=False)
        monitor = make_monitor(stream, **{KEY_IMPACT_DETECTION_ENABLED: False})
        monitor.start()

        assert wait_until(lambda: monitor.capture.processed_samples == 173)
        timers.fire_all()

        assert wait_until(lambda: countdown_armed(timers))
        assert monitor.detection_counts["fall"] == 1
        assert monitor.orchestrator.current_alert.type is AlertType.FALL
        assert history.load()[0].status is AlertStatus.TRIGGERED

    def test_simulated_impact_raises_alert(self, make_monitor, timers):
        stream = SimulatedSensorStream("impact", realtime=False, seed=3, loop_rest=False)
        monitor = make_monitor(stream, **{KEY_FALL_DETECTION_ENABLED: False})
        monitor.start()

        assert wait_until(lambda: countdown_armed(timers))
        assert monitor.detection_counts["impact"] == 1
        assert monitor.orchestrator.current_alert.type is AlertType.IMPACT

    def test_rest_raises_nothing(self, make_monitor):
        stream = SimulatedSensorStream("rest", realtime=False, seed=3, loop_rest=False)
        monitor = make_monitor(stream)
        monitor.start()

        assert wait_until(lambda: monitor.capture.processed_samples == 100)
        assert dict(monitor.detection_counts) == {}
        assert not monitor.orchestrator.is_active

    def test_attaches_snapshot_provider(self, make_monitor):
        monitor = make_monitor()
        assert monitor.orchestrator.snapshot_provider == monitor.processor.current_snapshot

    def test_disabled_app_does_not_start(self, make_monitor):
        monitor = make_monitor(**{KEY_APP_ENABLED: False})
        assert monitor.start() is False
        assert not monitor.is_monitoring

    def test_sensor_failure_stops_monitoring(self, make_monitor):
        """Test that a failing stream stops the monitor."""
        stream = MagicMock()
        monitor = make_monitor(stream)
        monitor.start()

        on_error = stream.subscribe.call_args[0][1]
        on_error(OSError("sensor disconnected"))

        assert not monitor.is_monitoring
        assert monitor.get_status()["sensor_status"] == "sensor_unavailable"

    def test_restart_applies_settings(self, make_monitor, store):
        monitor = make_monitor()
        assert monitor.detector.fall_enabled

        store.set_bool(KEY_FALL_DETECTION_ENABLED, False)
        monitor.restart_with_new_settings()
        assert not monitor.detector.fall_enabled

    def test_status(self, make_monitor):
        status = make_monitor().get_status()
        assert status["context"] == "foreground"
        assert status["is_monitoring"] is False
        assert status["emergency_active"] is False
        assert status["detections"] == {}
        assert status["magnitude"] is None


class TestInactivityCheck:
    """Test cases for the background inactivity check."""

    @pytest.fixture
    def monitor(self, store, make_orchestrator, clock, timers):
        store.set_bool(KEY_INACTIVITY_ENABLED, True)
        return EmergencyMonitor(MagicMock(), store, make_orchestrator(name="background"),
                                clock=clock, timer_factory=timers)

    def test_first_check_starts_window(self, monitor, store, clock):
        assert monitor.perform_background_check() is None
        assert store.get_int(KEY_LAST_CHECK_IN) == int(clock.now)

    def test_alert_after_threshold(self, monitor, store, clock):
        """Test that twelve silent hours raise an inactivity alert."""
        monitor.check_in()
        clock.advance(11 * 3600)
        assert monitor.perform_background_check() is None

        clock.advance(3600)
        alert = monitor.perform_background_check()
        assert alert.type is AlertType.INACTIVITY
        assert "12 hours" in alert.custom_message
        assert monitor.seconds_since_check_in() == 0

    def test_disabled(self, monitor, store, clock):
        store.set_bool(KEY_INACTIVITY_ENABLED, False)
        monitor.check_in()
        clock.advance(24 * 3600)
        assert monitor.perform_background_check() is None

    def test_background_tick_reschedules(self, monitor, timers):
        monitor.start()
        try:
            timer = next(t for t in timers.pending() if t.interval == monitor.background_interval)
            timer.fire()
            assert any(t.interval == monitor.background_interval for t in timers.pending())
        finally:
            monitor.stop()


class TestCommandLine:
    """Test cases for the fallguard command line."""

    @pytest.fixture
    def store_path(self, tmp_path):
        return str(tmp_path / "settings.json")

    def test_add_and_list_contacts(self, store_path, capsys):
        main(["contacts", "add", "--name", "Alice", "--phone", "+15550100001",
              "--primary", "--store", store_path])
        main(["contacts", "list", "--store", store_path])

        out = capsys.readouterr().out
        assert "Added Alice" in out
        assert "+15550100001" in out
        contacts = FallGuardApp(store_path=store_path).contacts.load()
        assert contacts[0].is_primary

    def test_invalid_contact_rejected(self, store_path, capsys):
        main(["contacts", "add", "--name", "Alice", "--phone", "123", "--store", store_path])
        assert "Contact not added" in capsys.readouterr().out

    def test_contact_action_needs_id(self, store_path):
        with pytest.raises(SystemExit):
            main(["contacts", "remove", "--store", store_path])

    def test_unknown_history_action(self, store_path):
        with pytest.raises(SystemExit):
            main(["history", "rewind", "--store", store_path])

    def test_history_stats_and_export(self, store_path, capsys):
        main(["history", "stats", "--store", store_path])
        main(["history", "export", "--store", store_path])

        out = capsys.readouterr().out
        assert "Total alerts: 0" in out
        assert json.loads(out.strip().splitlines()[-1]) == []

    def test_siren_option_reaches_app(self, store_path, tmp_path):
        """Test that --siren configures the alarm recording."""
        siren = str(tmp_path / "siren.wav")
        with patch("fallguard.main.FallGuardApp") as app_class:
            main(["run", "--siren", siren, "--store", store_path])

        assert app_class.call_args[1]["siren_path"] == siren
        app_class.return_value.run_monitor.assert_called_once()

    def test_siren_path_configures_audio_alarm(self, store_path, tmp_path):
        siren = str(tmp_path / "siren.wav")
        orchestrator = FallGuardApp(store_path=store_path, silent=True, siren_path=siren).build_orchestrator(
            log_file=None
        )
        try:
            assert orchestrator.alarms.audio.asset_path == siren
        finally:
            orchestrator.close()
