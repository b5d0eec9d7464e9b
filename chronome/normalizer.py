"""Normalization of raw backend occurrences into EventInstance objects.

The backend hands over each occurrence's native VEVENT text; descriptive fields
(summary, location, description, attendees, STATUS) are read from it with
``icalendar`` while the effective times are supplied by the caller, which has
already decided whether to trust the backend or the raw re-derivation.
"""

import datetime
import logging
from typing import Any, Optional

from icalendar import Calendar

from .attendee_parser import AttendeeParser
from .constants import DEFAULT_EVENT_DURATION
from .exceptions import ParseError
from .ical_fields import extract_ical_property
from .meeting_services import find_meeting_url
from .models import CalendarSourceRef, EventInstance

logger = logging.getLogger(__name__)

UNTITLED_EVENT = "Untitled event"


def normalize_end(start: datetime.datetime, end: Optional[datetime.datetime]) -> datetime.datetime:
    """Return ``end``, or ``start`` plus one hour when it is missing or not after start."""
    if end is None or end <= start:
        return start + DEFAULT_EVENT_DURATION
    return end


class InstanceNormalizer:
    """Builds EventInstance objects from raw VEVENT text plus resolved times."""

    def __init__(self, attendee_parser: Optional[AttendeeParser] = None):
        self.attendee_parser = attendee_parser or AttendeeParser()

    def parse_component(self, raw_encoded_form: str) -> Optional[Any]:
        """Parse the first VEVENT out of a raw iCalendar string.

        Args:
            raw_encoded_form: VEVENT or VCALENDAR text

        Returns:
            icalendar Event component, or None for empty input

        Raises:
            ParseError: icalendar rejects the text
        """
        if not raw_encoded_form or not raw_encoded_form.strip():
            return None
        try:
            components = Calendar.from_ical(raw_encoded_form).walk("VEVENT")
        except ValueError as e:
            raise ParseError(f"Unparseable VEVENT: {e}") from e
        return components[0] if components else None

    def normalize(
        self,
        raw_encoded_form: str,
        series_uid: str,
        start: datetime.datetime,
        end: Optional[datetime.datetime],
        source: CalendarSourceRef,
        anchor: Optional[datetime.datetime] = None,
        is_date_only: Optional[bool] = None,
    ) -> EventInstance:
        """Normalize one occurrence.

        Args:
            raw_encoded_form: Native iCalendar text of the VEVENT
            series_uid: Event series UID
            start: Resolved effective start (aware, local)
            end: Resolved effective end; missing or non-positive durations become one hour
            source: Source the occurrence came from
            anchor: Recurrence anchor of a detached override
            is_date_only: Whether DTSTART is a DATE value; read from the raw form when None

        Returns:
            Normalized EventInstance with participation status still unknown

        Raises:
            ParseError: The raw form is malformed
        """
        component = self.parse_component(raw_encoded_form)

        title = _text(component, "SUMMARY") or UNTITLED_EVENT
        location = _text(component, "LOCATION")
        description = _text(component, "DESCRIPTION")
        status = _text(component, "STATUS")
        attendees = tuple(self.attendee_parser.parse_attendees(component)) if component is not None else ()

        if is_date_only is None:
            dtstart = extract_ical_property(raw_encoded_form, "DTSTART")
            is_date_only = bool(dtstart and dtstart.is_date_only)

        video_link = (
            find_meeting_url(location)
            or find_meeting_url(description)
            or find_meeting_url(raw_encoded_form)
        )

        return EventInstance(
            series_uid=series_uid,
            recurrence_anchor_start=anchor,
            effective_start=start,
            effective_end=normalize_end(start, end),
            title=title,
            location=location,
            description=description,
            is_date_only=is_date_only,
            event_status=status.upper() if status else None,
            attendees=attendees,
            video_link=video_link,
            source_id=source.source_id,
            source_color=source.color_hint,
            owner_account_identity=source.account_identity,
        )


def _text(component: Any, name: str) -> Optional[str]:
    if component is None:
        return None
    value = component.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None
