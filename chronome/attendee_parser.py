"""Attendee parsing and participation lookup for iCalendar components."""

import logging
from typing import Any, Optional

from .models import Attendee, ParticipationStatus

logger = logging.getLogger(__name__)

PARTSTAT_MAP: dict[str, ParticipationStatus] = {
    "ACCEPTED": ParticipationStatus.ACCEPTED,
    "DECLINED": ParticipationStatus.DECLINED,
    "TENTATIVE": ParticipationStatus.TENTATIVE,
    "NEEDS-ACTION": ParticipationStatus.NEEDS_ACTION,
}


def normalize_address(value: Any) -> str:
    """Lowercase a calendar address and strip a ``mailto:`` prefix."""
    address = str(value).strip()
    if address.lower().startswith("mailto:"):
        address = address[7:]
    return address.lower()


class AttendeeParser:
    """Parser for iCalendar ATTENDEE properties."""

    def parse_attendee(self, attendee_prop: Any) -> Optional[Attendee]:
        """Parse attendee from iCalendar property.

        Args:
            attendee_prop: iCalendar ATTENDEE property (``vCalAddress``)

        Returns:
            Parsed Attendee or None
        """
        email = normalize_address(attendee_prop)
        if not email:
            return None

        params = getattr(attendee_prop, "params", {}) or {}
        partstat = str(params.get("PARTSTAT", "")).upper()
        name = params.get("CN")

        return Attendee(
            email=email,
            name=str(name) if name else None,
            status=PARTSTAT_MAP.get(partstat, ParticipationStatus.UNKNOWN),
        )

    def parse_attendees(self, component: Any) -> list[Attendee]:
        """Parse all attendees from an iCalendar component.

        Args:
            component: iCalendar component (e.g., VEVENT)

        Returns:
            List of parsed Attendee objects
        """
        attendee_props = component.get("ATTENDEE", [])

        # A single ATTENDEE comes back bare, several come back as a list
        if not isinstance(attendee_props, list):
            attendee_props = [attendee_props] if attendee_props else []

        attendees = []
        for attendee_prop in attendee_props:
            attendee = self.parse_attendee(attendee_prop)
            if attendee:
                attendees.append(attendee)
        return attendees


def find_account_status(
    attendees: tuple[Attendee, ...] | list[Attendee],
    account_identity: Optional[str],
) -> Optional[ParticipationStatus]:
    """Return the owning account's participation status, if it is an attendee.

    Args:
        attendees: Parsed attendees of the event
        account_identity: Address of the account that owns the source

    Returns:
        The matching attendee's status, or None when the account is not listed
    """
    if not account_identity:
        return None
    wanted = normalize_address(account_identity)
    for attendee in attendees:
        if attendee.email == wanted:
            return attendee.status
    return None
