"""Data models for the chronome event resolution pipeline."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer


def to_epoch_ms(dt: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds."""
    return int(dt.timestamp() * 1000)


class CalendarSourceRef(BaseModel):
    """External identity of a calendar as reported by the source catalog."""

    source_id: str = Field(..., description="Stable source identifier")
    display_name: str = Field(default="", description="Human-readable calendar name")
    enabled: bool = Field(default=True, description="Whether the catalog reports the source enabled")
    color_hint: Optional[str] = Field(default=None, description="Calendar color, e.g. #1E90FF")
    account_identity: Optional[str] = Field(
        default=None, description="Address of the account that owns/sees this calendar"
    )
    writable: bool = Field(default=False, description="Whether the account can edit the calendar")
    calendar_id: Optional[str] = Field(
        default=None, description="Canonical calendar identity shared across accounts"
    )

    model_config = ConfigDict(frozen=True)


class RawOccurrence(BaseModel):
    """One backend-reported occurrence for a query window.

    ``declared_start``/``declared_end`` are whatever the backend reports; for
    detached overrides they may carry the anchor's time instead of the true
    time. ``raw_encoded_form`` is the VEVENT's native iCalendar text and is the
    only trustworthy source for the true start/end/anchor.
    """

    owner_uid: str
    recurrence_anchor: Optional[datetime] = None
    declared_start: Optional[datetime] = None
    declared_end: Optional[datetime] = None
    raw_encoded_form: str = ""

    model_config = ConfigDict(frozen=True)


class ChangeKind(str, Enum):
    """Kinds of backend change notifications."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class ChangeNotification(BaseModel):
    """A single change reported by a backend subscription."""

    kind: ChangeKind
    uids: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)


class ParticipationStatus(str, Enum):
    """The owning account's response to an event."""

    ACCEPTED = "accepted"
    DECLINED = "declined"
    TENTATIVE = "tentative"
    NEEDS_ACTION = "needs_action"
    UNKNOWN = "unknown"


class Attendee(BaseModel):
    """Calendar event attendee."""

    email: str = Field(..., description="Attendee address, lowercased, without mailto:")
    name: Optional[str] = Field(default=None, description="Common name")
    status: ParticipationStatus = Field(default=ParticipationStatus.UNKNOWN)

    model_config = ConfigDict(frozen=True)


class EventInstance(BaseModel):
    """Normalized, day-scoped occurrence ready for classification."""

    series_uid: str = Field(..., description="Event series identity (iCalendar UID)")
    recurrence_anchor_start: Optional[datetime] = Field(
        default=None, description="Anchor of a detached override; None for masters/singles"
    )
    effective_start: datetime
    effective_end: datetime
    title: str = Field(default="Untitled event")
    location: Optional[str] = None
    description: Optional[str] = None
    participation_status: ParticipationStatus = ParticipationStatus.UNKNOWN
    is_all_day: bool = False
    is_date_only: bool = Field(default=False, description="Backend marks DTSTART as a DATE value")
    event_status: Optional[str] = Field(default=None, description="iCalendar STATUS value")
    attendees: tuple[Attendee, ...] = ()
    video_link: Optional[str] = None
    source_id: Optional[str] = None
    source_color: Optional[str] = None
    owner_account_identity: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_declined(self) -> bool:
        return self.participation_status == ParticipationStatus.DECLINED

    @property
    def is_tentative(self) -> bool:
        return self.participation_status == ParticipationStatus.TENTATIVE

    @property
    def is_needs_response(self) -> bool:
        return self.participation_status == ParticipationStatus.NEEDS_ACTION

    @property
    def is_detached_override(self) -> bool:
        return self.recurrence_anchor_start is not None

    @field_serializer("effective_start", "effective_end")
    def serialize_datetime(self, dt: datetime) -> str:
        """Serialize datetime to ISO format."""
        return dt.isoformat()


class RescheduleCacheEntry(BaseModel):
    """Per-source recurrence anomalies for one calendar date.

    ``moved_away_from_today`` maps ``"<uid>:<YYYYMMDD anchor>"`` to the
    occurrence's true date; ``moved_into_today`` holds fully normalized
    instances whose true date is the cached date.
    """

    date_key: str
    moved_away_from_today: dict[str, str] = Field(default_factory=dict)
    moved_into_today: tuple[EventInstance, ...] = ()

    model_config = ConfigDict(frozen=True)

    @classmethod
    def empty(cls, date_key: str) -> "RescheduleCacheEntry":
        return cls(date_key=date_key)


class SelectionOptions(BaseModel):
    """User-configurable rules for the next-meeting selector."""

    event_types: tuple[str, ...] = ("regular",)
    show_current_meeting: bool = True

    model_config = ConfigDict(frozen=True)
