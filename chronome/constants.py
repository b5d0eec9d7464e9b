"""Shared time and scheduling constants."""

from datetime import timedelta

ONE_HOUR = timedelta(hours=1)
ONE_DAY = timedelta(days=1)

# A meeting with less than this left is no longer "current" for highlighting
CURRENT_MEETING_CUTOFF = timedelta(minutes=5)

DEFAULT_EVENT_DURATION = ONE_HOUR

DEBOUNCE_SECONDS = 0.5
CLIENT_CONNECT_TIMEOUT_SECONDS = 10.0
SYNC_DELAY_SECONDS = 0.05
DEFAULT_REFRESH_INTERVAL_SECONDS = 300

EVENT_TYPE_REGULAR = "regular"
EVENT_TYPE_TENTATIVE = "tentative"
EVENT_TYPE_DECLINED = "declined"
VALID_EVENT_TYPES = (EVENT_TYPE_REGULAR, EVENT_TYPE_TENTATIVE, EVENT_TYPE_DECLINED)

DATE_KEY_FORMAT = "%Y%m%d"
