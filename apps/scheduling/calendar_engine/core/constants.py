"""Engine constants."""

# Working hours (viewer preference, local hours)
DEFAULT_WORKING_HOURS_START = 7  # 7:00 AM
DEFAULT_WORKING_HOURS_END = 21  # 9:00 PM
MIN_WORKING_HOURS_GAP = 2
FIRST_GRID_HOUR = 0
LAST_GRID_HOUR = 23
# Persisted preference key (kept compatible with stored browser preferences)
WORKING_HOURS_STORAGE_KEY = "calendar-working-hours-v2"

# Default labels for staff calendar blocks
DEFAULT_MANUAL_BLOCK_SUMMARY = "Blocked"
DEFAULT_EXTERNAL_BLOCK_SUMMARY = "Busy"
DEFAULT_APPOINTMENT_LABEL = "Appointment"

# Source tag stored on staff calendar blocks
MANUAL_BLOCK_SOURCE = "manual"
GOOGLE_BLOCK_SOURCE = "google"
