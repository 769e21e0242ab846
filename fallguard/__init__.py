"""
FallGuard personal-safety monitor

Continuous motion-sensor monitoring that detects falls and impacts and runs
an emergency response: local alarms, a cancellable countdown and SMS alerts
to pre-configured contacts.

Components:
- Sensor capture with a bounded queue and a processing thread
- Signal processing (magnitude, rolling buffers, trimmed-mean baseline)
- Fall (free fall + impact) and impact (confirmation + cooldown) detectors
- Process-wide emergency coordinator shared by every monitor
- Emergency response orchestration with alarms, location and SMS
"""

from .config import *
from .coordinator import EmergencyCoordinator
from .detectors import EventDetector
from .emergency_monitor import EmergencyMonitor
from .emergency_response import EmergencyResponseOrchestrator
from .main import FallGuardApp
from .signal_processing import SignalProcessor

__version__ = "1.0.0"
__author__ = "FallGuard Team"
