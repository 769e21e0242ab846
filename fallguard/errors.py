"""
Error taxonomy for the FallGuard monitor
"""


class FallGuardError(RuntimeError):
    """Base class for FallGuard errors."""


class PermissionUnavailable(FallGuardError):
    """A device capability was denied. Callers degrade instead of crashing."""


class SensorUnavailable(FallGuardError):
    """The motion sensor stream could not be started, failed or went silent."""


class LocationUnresolved(FallGuardError):
    """Neither a fresh nor a last-known location fix could be obtained."""


class DispatchFailure(FallGuardError):
    """SMS dispatch failed for every recipient of a batch."""

    def __init__(self, message, failed=None):
        super().__init__(message)
        self.failed = list(failed or [])


class CoordinatorConflict(FallGuardError):
    """An alert tried to start while another alert is active."""
