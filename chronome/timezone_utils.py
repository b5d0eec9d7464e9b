"""Timezone resolution, clock and "today" window helpers for chronome."""

from __future__ import annotations

import datetime
import logging
import os
from dataclasses import dataclass
from typing import ClassVar, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import tz as dateutil_tz

from .constants import DATE_KEY_FORMAT

logger = logging.getLogger(__name__)

TEST_TIME_ENV = "CHRONOME_TEST_TIME"


class TimezoneResolver:
    """Resolves iCalendar TZID values and the local wall-clock timezone."""

    # Windows timezone names emitted by Outlook/Exchange feeds
    WINDOWS_TZ_MAP: ClassVar[dict[str, str]] = {
        "Pacific Standard Time": "America/Los_Angeles",
        "Mountain Standard Time": "America/Denver",
        "Central Standard Time": "America/Chicago",
        "Eastern Standard Time": "America/New_York",
        "Alaskan Standard Time": "America/Anchorage",
        "Hawaiian Standard Time": "Pacific/Honolulu",
        "Arizona Standard Time": "America/Phoenix",
        "GMT Standard Time": "Europe/London",
        "Central European Standard Time": "Europe/Paris",
        "W. Europe Standard Time": "Europe/Berlin",
        "Romance Standard Time": "Europe/Paris",
        "China Standard Time": "Asia/Shanghai",
        "Tokyo Standard Time": "Asia/Tokyo",
        "India Standard Time": "Asia/Kolkata",
        "AUS Eastern Standard Time": "Australia/Sydney",
        "UTC": "UTC",
    }

    def resolve_tzid(self, tzid: str) -> Optional[datetime.tzinfo]:
        """Map a TZID parameter to a tzinfo, or None if it is unknown.

        Args:
            tzid: TZID parameter value, IANA or Windows style, optionally quoted

        Returns:
            Matching tzinfo, or None when neither an IANA nor a known Windows name
        """
        name = tzid.strip().strip('"')
        if not name:
            return None
        name = self.WINDOWS_TZ_MAP.get(name, name)
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown TZID %r", tzid)
            return None

    def local_timezone(self, name: Optional[str] = None) -> datetime.tzinfo:
        """Return the configured local timezone, or the host's when unset.

        Args:
            name: Optional IANA timezone name from configuration
        """
        if name:
            try:
                return ZoneInfo(name)
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning("Configured timezone %r not found; using host local time", name)

        # Host zone must follow DST transitions, never a fixed offset
        host_name = os.environ.get("TZ", "").lstrip(":")
        if host_name:
            try:
                return ZoneInfo(host_name)
            except (ZoneInfoNotFoundError, ValueError):
                logger.debug("TZ=%r is not an IANA name; using system local rules", host_name)
        return dateutil_tz.tzlocal()


class TimeProvider:
    """Provides current time with test time override support."""

    def __init__(self, local_tz: datetime.tzinfo):
        self.local_tz = local_tz

    def now(self) -> datetime.datetime:
        """Return the current local time as an aware datetime.

        Can be frozen for diagnostics via the CHRONOME_TEST_TIME environment
        variable (ISO 8601, e.g. "2025-12-10T10:00:00-05:00"). Naive values are
        taken as local wall-clock time.
        """
        test_time = os.environ.get(TEST_TIME_ENV)
        if test_time:
            try:
                from dateutil import parser as date_parser

                dt = date_parser.isoparse(test_time)
                if dt.tzinfo is None:
                    dt = dt.replace(tzinfo=self.local_tz)
                return dt.astimezone(self.local_tz)
            except (ValueError, OverflowError) as e:
                logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV, test_time, e)

        return datetime.datetime.now(self.local_tz)


@dataclass(frozen=True)
class DayWindow:
    """The local calendar day a refresh resolves meetings for."""

    start: datetime.datetime
    end: datetime.datetime
    date_key: str

    @property
    def date(self) -> datetime.date:
        return self.start.date()

    def overlaps(self, start: datetime.datetime, end: datetime.datetime) -> bool:
        """Local-time overlap test used as the final filter on instances."""
        return start <= self.end and end > self.start


def date_key(day: datetime.date) -> str:
    """Format a date as the YYYYMMDD key used by the reschedule index."""
    return day.strftime(DATE_KEY_FORMAT)


def today_window(now: datetime.datetime) -> DayWindow:
    """Build the [00:00, 23:59:59.999999] window of ``now``'s local day.

    Args:
        now: Aware datetime already expressed in the local timezone
    """
    tz = now.tzinfo
    start = datetime.datetime(now.year, now.month, now.day, tzinfo=tz)
    end = datetime.datetime(now.year, now.month, now.day, 23, 59, 59, 999999, tzinfo=tz)
    return DayWindow(start=start, end=end, date_key=date_key(now.date()))


_resolver = TimezoneResolver()


def resolve_tzid(tzid: str) -> Optional[datetime.tzinfo]:
    """Resolve a TZID parameter (convenience function)."""
    return _resolver.resolve_tzid(tzid)


def local_timezone(name: Optional[str] = None) -> datetime.tzinfo:
    """Return the configured or host local timezone (convenience function)."""
    return _resolver.local_timezone(name)
