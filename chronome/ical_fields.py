"""Raw re-derivation of occurrence times from native iCalendar text.

Backend convenience accessors report the anchor's time rather than the true
time for detached overrides, so anomaly detection and override placement read
DTSTART, DTEND and RECURRENCE-ID straight from the VEVENT's encoded form.

Handles property lines like:
    DTSTART;TZID=America/New_York:20250101T093000
    DTSTART:20250101T093000Z
    DTSTART;VALUE=DATE:20250101
    RECURRENCE-ID;TZID=Pacific Standard Time:20251028T143000
"""

from __future__ import annotations

import datetime
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from .exceptions import ParseError
from .timezone_utils import resolve_tzid

logger = logging.getLogger(__name__)

_FOLD_RE = re.compile(r"\r?\n[ \t]")
_VALUE_RE = re.compile(r"^(\d{8})(?:T(\d{6}))?(Z)?$")
_TZID_RE = re.compile(r"TZID=(\"[^\"]*\"|[^;:]+)", re.IGNORECASE)


@dataclass(frozen=True)
class IcalProperty:
    """A date/time property line split into its parts."""

    params: str
    value: str
    is_utc: bool

    @property
    def is_date_only(self) -> bool:
        return len(self.value) == 8

    @property
    def tzid(self) -> Optional[str]:
        match = _TZID_RE.search(self.params)
        return match.group(1).strip('"') if match else None


@dataclass(frozen=True)
class IcalTime:
    """A parsed date/time value."""

    value: datetime.datetime
    is_date_only: bool


@dataclass(frozen=True)
class RawOccurrenceTimes:
    """True start/end/anchor of an occurrence as encoded by the backend."""

    start: Optional[IcalTime]
    end: Optional[IcalTime]
    anchor: Optional[IcalTime]


@lru_cache(maxsize=16)
def _property_re(prop_name: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(prop_name)}((?:;[^:\n]*)?):([^\n]*)$", re.IGNORECASE | re.MULTILINE)


def unfold(ical_str: str) -> str:
    """Undo RFC 5545 line folding and normalize line endings to ``\\n``."""
    return _FOLD_RE.sub("", ical_str).replace("\r\n", "\n").replace("\r", "\n")


def vevent_section(ical_str: str) -> str:
    """Return the first VEVENT block of ``ical_str`` (the whole text if none).

    Keeps DTSTART lines of VTIMEZONE STANDARD/DAYLIGHT blocks out of reach.
    """
    text = unfold(ical_str)
    begin = text.find("BEGIN:VEVENT")
    if begin == -1:
        return text
    end = text.find("END:VEVENT", begin)
    return text[begin:] if end == -1 else text[begin:end]


def extract_ical_property(ical_str: str, prop_name: str) -> Optional[IcalProperty]:
    """Extract a raw date/time property from an iCalendar string.

    Args:
        ical_str: Raw iCalendar text (VEVENT or full VCALENDAR)
        prop_name: Property name (DTSTART, DTEND, RECURRENCE-ID)

    Returns:
        The split property, or None when the property is absent

    Raises:
        ParseError: The property is present but its value is not a DATE or DATE-TIME
    """
    if not ical_str or not prop_name:
        return None

    match = _property_re(prop_name.upper()).search(vevent_section(ical_str))
    if not match:
        return None

    params, raw_value = match.group(1), match.group(2).strip()
    value_match = _VALUE_RE.match(raw_value)
    if not value_match:
        raise ParseError(f"Malformed {prop_name} value: {raw_value!r}")

    date_part, time_part, utc_flag = value_match.groups()
    value = f"{date_part}T{time_part}" if time_part else date_part
    return IcalProperty(params=params, value=value, is_utc=bool(utc_flag))


def parse_ical_datetime(
    ical_str: str,
    prop_name: str,
    local_tz: datetime.tzinfo,
) -> Optional[IcalTime]:
    """Parse an iCalendar date/time property into an aware local datetime.

    UTC values and TZID values are converted to ``local_tz``; floating values
    and DATE values are taken as local wall-clock time. An unknown TZID falls
    back to local time.

    Args:
        ical_str: Raw iCalendar text
        prop_name: Property name (DTSTART, DTEND, RECURRENCE-ID)
        local_tz: Local timezone of the day window

    Returns:
        Parsed time, or None when the property is absent

    Raises:
        ParseError: The property value is malformed or not a valid calendar date
    """
    prop = extract_ical_property(ical_str, prop_name)
    if prop is None:
        return None

    value = prop.value
    try:
        year, month, day = int(value[0:4]), int(value[4:6]), int(value[6:8])
        hour = minute = second = 0
        if not prop.is_date_only:
            hour, minute, second = int(value[9:11]), int(value[11:13]), int(value[13:15])
        naive = datetime.datetime(year, month, day, hour, minute, second)
    except ValueError as e:
        raise ParseError(f"Invalid {prop_name} value {value!r}: {e}") from e

    if prop.is_utc:
        tz: datetime.tzinfo = datetime.timezone.utc
    elif prop.tzid:
        resolved = resolve_tzid(prop.tzid)
        if resolved is None:
            logger.debug("Unknown TZID %r on %s; using local time", prop.tzid, prop_name)
        tz = resolved or local_tz
    else:
        tz = local_tz

    return IcalTime(value=naive.replace(tzinfo=tz).astimezone(local_tz), is_date_only=prop.is_date_only)


def rederive_occurrence_times(ical_str: str, local_tz: datetime.tzinfo) -> RawOccurrenceTimes:
    """Re-derive the true start, end and recurrence anchor of an occurrence.

    Raises:
        ParseError: Any of the three properties is malformed
    """
    return RawOccurrenceTimes(
        start=parse_ical_datetime(ical_str, "DTSTART", local_tz),
        end=parse_ical_datetime(ical_str, "DTEND", local_tz),
        anchor=parse_ical_datetime(ical_str, "RECURRENCE-ID", local_tz),
    )
