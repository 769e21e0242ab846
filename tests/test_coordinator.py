"""Tests for the process-wide EmergencyCoordinator."""

import threading

import pytest

from fallguard.coordinator import EmergencyCoordinator, EmergencyState
from fallguard.errors import CoordinatorConflict


class TestEmergencyCoordinator:
    """Test cases for EmergencyCoordinator."""

    def test_initial_state(self, coordinator):
        """Test that a fresh coordinator is idle and permits new emergencies."""
        assert coordinator.state == EmergencyState()
        assert coordinator.can_start_new_emergency()
        assert coordinator.seconds_since_cancellation() == 0.0

    def test_start_emergency(self, coordinator):
        """Test that start marks the alert active and broadcasts."""
        changes = []
        coordinator.add_listener(changes.append)
        coordinator.start_emergency("100")

        assert coordinator.is_active
        assert not coordinator.is_cancelled
        assert coordinator.active_alert_id == "100"
        assert changes == [True]

    def test_cancel_matching_id(self, coordinator, clock):
        """Test that cancel with the active id releases it."""
        coordinator.start_emergency("100")
        assert coordinator.cancel_emergency("100") is True

        state = coordinator.state
        assert not state.is_active
        assert state.is_cancelled
        assert state.active_alert_id is None
        assert state.last_cancellation_time == clock.now

    def test_cancel_with_non_matching_id_is_noop(self, coordinator):
        """Test that a stale id cannot cancel another alert."""
        coordinator.start_emergency("200")
        changes = []
        coordinator.add_listener(changes.append)

        assert coordinator.cancel_emergency("100") is False
        assert coordinator.is_active
        assert coordinator.active_alert_id == "200"
        assert coordinator.state.last_cancellation_time is None
        assert changes == []

    def test_cancel_is_idempotent(self, coordinator, timers):
        """Test that cancelling twice is safe."""
        coordinator.start_emergency("100")
        coordinator.cancel_emergency("100")
        coordinator.cancel_emergency("100")

        assert not coordinator.is_active
        assert len(timers.pending()) == 1

    def test_grace_timer_clears_cancel_flag(self, coordinator, timers):
        """Test that the cancel flag is cleared after the grace delay."""
        coordinator.start_emergency("100")
        coordinator.cancel_emergency("100")
        timer = timers.pending()[0]
        assert timer.interval == pytest.approx(0.5)

        timer.fire()
        assert not coordinator.is_cancelled
        assert coordinator.state.last_cancellation_time is not None

    def test_stale_grace_timer_is_ignored(self, coordinator, timers):
        """Test that an old grace timer cannot clear a newer cancellation."""
        coordinator.start_emergency("100")
        coordinator.cancel_emergency("100")
        first = timers.timers[0]
        coordinator.start_emergency("101")
        coordinator.cancel_emergency("101")

        assert first.cancelled
        first.function(*first.args)
        assert coordinator.is_cancelled

    def test_complete_matching_id(self, coordinator):
        """Test that complete releases without setting the cancel flag."""
        coordinator.start_emergency("100")
        assert coordinator.complete_emergency("100") is True
        assert coordinator.state == EmergencyState()

    def test_complete_with_non_matching_id_is_noop(self, coordinator):
        """Test that completing a stale alert leaves the active one alone."""
        coordinator.start_emergency("200")
        assert coordinator.complete_emergency("100") is False
        assert coordinator.active_alert_id == "200"

    def test_is_active_and_cancelled_never_both_true(self, coordinator, timers):
        """Test the state invariant across a full cycle."""
        seen = []
        coordinator.add_listener(lambda active: seen.append(coordinator.state))
        coordinator.start_emergency("1")
        coordinator.cancel_emergency("1")
        timers.fire_all()
        coordinator.start_emergency("2")
        coordinator.complete_emergency("2")

        for state in seen + [coordinator.state]:
            assert not (state.is_active and state.is_cancelled)
            assert state.active_alert_id is None or state.is_active

    def test_cooldown_after_cancellation(self, coordinator, clock):
        """Test the 30 second window after a cancellation."""
        coordinator.start_emergency("100")
        coordinator.cancel_emergency("100")
        assert not coordinator.can_start_new_emergency()

        clock.advance(29)
        assert not coordinator.can_start_new_emergency()
        assert coordinator.seconds_since_cancellation() == pytest.approx(29)

        clock.advance(1)
        assert coordinator.can_start_new_emergency()

    def test_try_start_conflict(self, coordinator):
        """Test that a second alert cannot take over an active one."""
        coordinator.try_start_emergency("100")
        with pytest.raises(CoordinatorConflict):
            coordinator.try_start_emergency("200")
        assert coordinator.active_alert_id == "100"

    def test_try_start_during_grace_period(self, coordinator, timers):
        """Test that nothing starts while the cancel flag is set."""
        coordinator.start_emergency("100")
        coordinator.cancel_emergency("100")
        with pytest.raises(CoordinatorConflict):
            coordinator.try_start_emergency("200")

        timers.fire_all()
        coordinator.try_start_emergency("200")
        assert coordinator.active_alert_id == "200"

    def test_reset_state(self, coordinator, timers):
        """Test the recovery escape hatch."""
        coordinator.start_emergency("100")
        coordinator.cancel_emergency("100")
        coordinator.reset_state()

        assert coordinator.state == EmergencyState()
        assert coordinator.can_start_new_emergency()
        assert all(t.cancelled for t in timers.timers)

    def test_failing_listener_is_isolated(self, coordinator):
        """Test that a raising listener does not break transitions."""
        received = []

        def broken(active):
            raise RuntimeError("listener failed")

        coordinator.add_listener(broken)
        coordinator.add_listener(received.append)
        coordinator.start_emergency("100")
        assert received == [True]

    def test_remove_listener(self, coordinator):
        """Test listener removal."""
        received = []
        remove = coordinator.add_listener(received.append)
        remove()
        coordinator.start_emergency("100")
        assert received == []

    def test_concurrent_starts_leave_one_winner(self, clock, timers):
        """Test that racing contexts resolve to exactly one active alert."""
        coordinator = EmergencyCoordinator(clock=clock, timer_factory=timers)
        winners = []
        barrier = threading.Barrier(8)

        def contender(alert_id):
            barrier.wait()
            try:
                coordinator.try_start_emergency(alert_id)
                winners.append(alert_id)
            except CoordinatorConflict:
                pass

        threads = [threading.Thread(target=contender, args=(str(i),)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(winners) == 1
        assert coordinator.active_alert_id == winners[0]
