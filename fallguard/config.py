"""
Configuration constants for the FallGuard personal-safety monitor
"""

# Physical constants
EARTH_GRAVITY = 9.81  # m/s^2

# Sensor sampling
SENSOR_SAMPLING_RATE = 50  # Hz
SENSOR_STALL_TIMEOUT = 5.0  # seconds without a sample before the stream is considered dead
SAMPLE_QUEUE_SIZE = 500  # Bounded hand-off between stream callback and processing thread

# Signal processing buffers
DISPLAY_BUFFER_SIZE = 100  # Magnitudes kept for display/logging
BASELINE_WINDOW_SIZE = 20  # Magnitudes used for baseline estimation
BASELINE_MIN_SAMPLES = 10  # Baseline is only recomputed once this many are buffered
CALIBRATION_MIN_SAMPLES = 5

# Fall detection (free fall followed by impact)
FREE_FALL_THRESHOLD = 0.5 * EARTH_GRAVITY  # m/s^2, near-zero apparent gravity
FREE_FALL_DURATION_MS = 300  # Window armed after each free-fall sample
FALL_DETECTION_THRESHOLD = 2.5 * EARTH_GRAVITY  # m/s^2, impact after free fall

# Impact detection (baseline deviation with confirmation)
IMPACT_DETECTION_THRESHOLD = 4.0  # m/s^2 deviation from baseline
GYROSCOPE_SENSITIVITY = 0.1  # rad/s, device must be rotating
IMPACT_CONFIRMATION_COUNT = 3  # Consecutive high readings needed
IMPACT_COOLDOWN_MS = 2000  # Minimum spacing between confirmed impacts

# Emergency coordination
CANCELLATION_GRACE_SECONDS = 0.5  # Cancel flag stays visible this long
NEW_EMERGENCY_COOLDOWN_SECONDS = 30  # No new emergency this soon after a cancellation

# Emergency response
ALERT_COUNTDOWN_SECONDS = 30  # User window to cancel before SMS is sent
DETECTION_COOLDOWN_SECONDS = 5 * 60  # Automated detections blocked after a cancellation
CANCELLATION_MESSAGE_WINDOW_SECONDS = 10 * 60  # "Alert cancelled" SMS allowed this long after sending
LOCATION_TIMEOUT_SECONDS = 10
GEOCODING_TIMEOUT_SECONDS = 15
SMS_TIMEOUT_SECONDS = 30  # a hung gateway counts as every recipient failing

# Local alarms
ALARM_DURATION_SECONDS = 30
DEFAULT_ALARM_VOLUME = 0.8
ALARM_ASSET_PATH = None  # Optional siren recording; synthesised when unset
ALARM_SAMPLE_RATE = 22050
SIREN_LOW_HZ = 650
SIREN_HIGH_HZ = 1400
SIREN_SWEEP_SECONDS = 1.0
BEEP_FREQUENCY_HZ = 880
BEEP_ON_SECONDS = 0.25
BEEP_OFF_SECONDS = 0.25
FLASH_INTERVAL_MS = 500

# Vibration patterns (milliseconds: [wait, vibrate, wait, vibrate, ...])
EMERGENCY_VIBRATION_PATTERN = [0, 1000, 500, 1000, 500, 1000]  # long-short-long
ALERT_VIBRATION_PATTERN = [0, 500, 250, 500]

# Alert history and contacts
MAX_ALERT_HISTORY = 100
MAX_EMERGENCY_CONTACTS = 10
MAX_PRIMARY_CONTACTS = 3
MIN_PHONE_DIGITS = 10

# Background checks
BACKGROUND_CHECK_INTERVAL_SECONDS = 15 * 60
INACTIVITY_THRESHOLD_HOURS = 12

# SMS templates
EMERGENCY_MESSAGE = (
    "EMERGENCY ALERT: {name} may need assistance. "
    "Last known location: {location}. Time: {timestamp}. "
    "Alert type: {alertType}. Please check on them immediately."
)
CANCEL_MESSAGE = (
    "ALERT CANCELLED: Previous emergency alert for {name} has been cancelled. "
    "They are safe."
)
TEST_MESSAGE = (
    "This is a test message from the FallGuard app. "
    "{name} has added you as an emergency contact."
)
UNKNOWN_LOCATION = "unknown"
DEFAULT_USER_NAME = "FallGuard user"

# Storage keys
KEY_EMERGENCY_CONTACTS = "emergency_contacts"
KEY_ALERT_HISTORY = "alert_history"
KEY_APP_ENABLED = "app_enabled"
KEY_FALL_DETECTION_ENABLED = "fall_detection_enabled"
KEY_IMPACT_DETECTION_ENABLED = "impact_detection_enabled"
KEY_AUDIO_ALERTS_ENABLED = "audio_alerts_enabled"
KEY_VIBRATION_ENABLED = "vibration_enabled"
KEY_FLASHLIGHT_ENABLED = "flashlight_enabled"
KEY_SAMPLING_RATE = "accelerometer_sampling_rate"
KEY_COUNTDOWN_SECONDS = "alert_countdown_seconds"
KEY_USER_NAME = "user_name"
KEY_INACTIVITY_ENABLED = "inactivity_detection_enabled"
KEY_LAST_CHECK_IN = "last_check_in"

# Logging
LOG_FILE = "emergency_log.txt"
STORE_FILE = "fallguard_settings.json"
