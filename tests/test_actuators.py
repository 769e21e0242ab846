"""Tests for the local alarm actuators."""

import time
from unittest.mock import MagicMock

import numpy as np
import pytest
from scipy.io import wavfile

from fallguard.actuators.audio import AudioAlarm, beep_pattern, load_siren, synthesize_siren
from fallguard.actuators.controller import AlarmController
from fallguard.actuators.flashlight import FlashlightAlarm
from fallguard.actuators.vibration import VibrationAlarm
from fallguard.storage import Settings


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestSirenSynthesis:
    """Test cases for the synthetic alarm sounds."""

    def test_siren_length_and_range(self):
        """Test one up/down cycle at the requested sample rate."""
        siren = synthesize_siren(sample_rate=8000, sweep_seconds=0.5)
        assert siren.dtype == np.float32
        assert len(siren) == 8000
        assert np.max(np.abs(siren)) <= 1.0

    def test_beep_pattern_ends_in_silence(self):
        beep = beep_pattern(sample_rate=8000, on_seconds=0.25, off_seconds=0.25)
        assert len(beep) == 4000
        assert np.all(beep[2000:] == 0)
        assert np.max(np.abs(beep[:2000])) > 0.9


class TestAudioAlarm:
    """Test cases for AudioAlarm."""

    @pytest.fixture
    def player(self):
        return MagicMock()

    @pytest.fixture
    def alarm(self, player, timers):
        return AudioAlarm(sample_rate=8000, player=player, timer_factory=timers)

    def test_plays_looping_siren(self, alarm, player, timers):
        """Test that the siren loops at the clipped volume for the duration."""
        assert alarm.play_alarm(volume=1.5, duration=30)

        data, sample_rate = player.play.call_args[0]
        assert sample_rate == 8000
        assert player.play.call_args[1] == {"loop": True}
        assert np.max(np.abs(data)) <= 1.0
        assert alarm.is_playing
        assert not alarm.using_fallback
        assert timers.timers[0].interval == 30

    def test_duration_timer_stops_playback(self, alarm, player, timers):
        alarm.play_alarm(duration=30)
        timers.fire_all()

        assert not alarm.is_playing
        player.stop.assert_called_once()

    def test_falls_back_to_beep(self, alarm, player):
        """Test the beep pattern when the siren cannot play."""
        player.play.side_effect = [RuntimeError("device busy"), None]
        assert alarm.play_alarm()
        assert alarm.using_fallback
        assert player.play.call_count == 2

    def test_missing_asset_falls_back_to_beep(self, player, timers, tmp_path):
        alarm = AudioAlarm(asset_path=str(tmp_path / "missing.wav"), sample_rate=8000, player=player,
                           timer_factory=timers)
        assert alarm.play_alarm()
        assert alarm.using_fallback

    def test_empty_asset_falls_back_to_beep(self, player, timers, tmp_path):
        """Test that a recording without samples is not played."""
        path = str(tmp_path / "empty.wav")
        wavfile.write(path, 8000, np.zeros(0, dtype=np.int16))
        alarm = AudioAlarm(asset_path=path, sample_rate=8000, player=player, timer_factory=timers)

        assert alarm.play_alarm()
        assert alarm.using_fallback
        data, _ = player.play.call_args[0]
        assert len(data) == len(beep_pattern(8000))

    def test_both_sounds_fail(self, alarm, player, timers):
        player.play.side_effect = RuntimeError("no audio device")
        assert not alarm.play_alarm()
        assert not alarm.is_playing
        assert timers.timers == []

    def test_restart_cancels_previous_timer(self, alarm, player, timers):
        """Test that a new alarm never overlaps the previous one."""
        alarm.play_alarm()
        alarm.play_alarm()

        assert timers.timers[0].cancelled
        assert player.stop.call_count == 1
        assert len(timers.pending()) == 1

    def test_stale_timer_is_ignored(self, alarm, timers):
        alarm.play_alarm()
        first = timers.timers[0]
        alarm.play_alarm()
        first.function(*first.args)
        assert alarm.is_playing

    def test_stop_is_idempotent(self, alarm, player):
        alarm.stop()
        alarm.play_alarm()
        alarm.stop()
        alarm.stop()
        assert player.stop.call_count == 1


class TestSirenAsset:
    """Test cases for loading a siren recording."""

    @pytest.fixture
    def siren_wav(self, tmp_path):
        path = str(tmp_path / "siren.wav")
        t = np.arange(1600) / 8000
        wavfile.write(path, 8000, (np.sin(2 * np.pi * 880 * t) * 32767).astype(np.int16))
        return path

    def test_load_recording(self, siren_wav):
        data, sample_rate = load_siren(siren_wav, 8000)
        assert sample_rate == 8000
        assert len(data) == 1600
        assert data.dtype == np.float32
        assert np.max(np.abs(data)) <= 1.0

    def test_no_asset_synthesises(self):
        data, sample_rate = load_siren(None, 8000)
        assert sample_rate == 8000
        assert len(data) == len(synthesize_siren(8000))

    def test_alarm_plays_recording(self, siren_wav, timers):
        """Test that a configured recording is what the alarm loops."""
        player = MagicMock()
        alarm = AudioAlarm(asset_path=siren_wav, sample_rate=8000, player=player, timer_factory=timers)

        assert alarm.play_alarm(volume=1.0)
        assert not alarm.using_fallback
        data, sample_rate = player.play.call_args[0]
        assert sample_rate == 8000
        assert len(data) == 1600


class TestVibrationAlarm:
    """Test cases for VibrationAlarm."""

    def test_runs_pattern_and_cancels(self):
        """Test that the pattern repeats until the duration ends."""
        motor = MagicMock()
        motor.has_vibrator.return_value = True
        alarm = VibrationAlarm(motor)

        assert alarm.vibrate(pattern=[0, 20, 10, 20], duration=0.2)
        assert wait_until(lambda: not alarm.is_active)

        motor.vibrate.assert_called_with([0, 20, 10, 20])
        assert motor.vibrate.call_count >= 2
        motor.cancel.assert_called_once()

    def test_stop_interrupts_long_pattern(self):
        motor = MagicMock()
        motor.has_vibrator.return_value = True
        alarm = VibrationAlarm(motor)

        alarm.vibrate(duration=30)
        alarm.stop()

        assert not alarm.is_active
        motor.cancel.assert_called_once()

    def test_no_vibrator(self):
        """Test that a missing vibrator is skipped instead of raising."""
        motor = MagicMock()
        motor.has_vibrator.side_effect = RuntimeError("no hardware")
        alarm = VibrationAlarm(motor)

        assert not alarm.vibrate(duration=1)
        motor.vibrate.assert_not_called()


class TestFlashlightAlarm:
    """Test cases for FlashlightAlarm."""

    def test_strobes_and_ends_off(self):
        torch = MagicMock()
        torch.is_available.return_value = True
        alarm = FlashlightAlarm(torch, interval_ms=10)

        assert alarm.flash(duration=0.1)
        assert wait_until(lambda: not alarm.is_active)

        assert torch.enable.call_count >= 2
        assert torch.disable.called
        assert not alarm.is_on

    def test_unavailable_torch(self):
        torch = MagicMock()
        torch.is_available.return_value = False
        assert not FlashlightAlarm(torch).flash(duration=1)
        torch.enable.assert_not_called()

    def test_torch_failure_still_switches_off(self):
        """Test that an erroring torch is left switched off."""
        torch = MagicMock()
        torch.is_available.return_value = True
        torch.enable.side_effect = RuntimeError("torch busy")
        alarm = FlashlightAlarm(torch, interval_ms=10)

        alarm.flash(duration=1)
        assert wait_until(lambda: not alarm.is_active)
        torch.disable.assert_called()


class TestAlarmController:
    """Test cases for AlarmController."""

    @pytest.fixture
    def actuators(self):
        audio, vibration, flashlight = MagicMock(), MagicMock(), MagicMock()
        audio.play_alarm.return_value = True
        vibration.vibrate.return_value = True
        flashlight.flash.return_value = True
        return audio, vibration, flashlight

    def test_starts_every_enabled_actuator(self, actuators):
        audio, vibration, flashlight = actuators
        controller = AlarmController(audio, vibration, flashlight)
        try:
            results = controller.start_all(volume=0.5, duration=10)
        finally:
            controller.shutdown()

        assert results == {"audio": True, "vibration": True, "flashlight": True}
        audio.play_alarm.assert_called_once_with(volume=0.5, duration=10)
        vibration.vibrate.assert_called_once_with(duration=10)
        flashlight.flash.assert_called_once_with(duration=10)

    def test_respects_settings(self, actuators):
        """Test that disabled alarm types are not started."""
        audio, vibration, flashlight = actuators
        settings = Settings(audio_alerts_enabled=False, flashlight_enabled=False)
        controller = AlarmController(audio, vibration, flashlight, settings=settings)
        try:
            results = controller.start_all()
        finally:
            controller.shutdown()

        assert results == {"vibration": True}
        audio.play_alarm.assert_not_called()
        flashlight.flash.assert_not_called()

    def test_failures_are_isolated(self, actuators):
        """Test that one broken actuator does not stop the others."""
        audio, vibration, flashlight = actuators
        flashlight.flash.side_effect = RuntimeError("torch busy")
        controller = AlarmController(audio, vibration, flashlight)
        try:
            results = controller.start_all()
        finally:
            controller.shutdown()

        assert results == {"audio": True, "vibration": True, "flashlight": False}

    def test_stop_all_continues_after_error(self, actuators):
        audio, vibration, flashlight = actuators
        audio.stop.side_effect = RuntimeError("stuck")
        controller = AlarmController(audio, vibration, flashlight)
        controller.shutdown()

        vibration.stop.assert_called()
        flashlight.stop.assert_called()
