"""Result publication: JSON payloads for UI collaborators.

Payload shape::

    {"nextMeeting": {"startMs", "endMs", "title", "hasVideoLink"} | null,
     "events": [{"startMs", "endMs", "title", "location", "videoLink",
                 "calendarColor", "isAllDay", "isDeclined", "isTentative",
                 "isNeedsResponse"}, ...]}
"""

import logging
from collections.abc import Callable
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .models import EventInstance, to_epoch_ms

logger = logging.getLogger(__name__)

PayloadListener = Callable[[str], None]


class _PayloadModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class NextMeetingPayload(_PayloadModel):
    start_ms: int
    end_ms: int
    title: str
    has_video_link: bool

    @classmethod
    def from_instance(cls, instance: EventInstance) -> "NextMeetingPayload":
        return cls(
            start_ms=to_epoch_ms(instance.effective_start),
            end_ms=to_epoch_ms(instance.effective_end),
            title=instance.title,
            has_video_link=instance.video_link is not None,
        )


class EventPayload(_PayloadModel):
    start_ms: int
    end_ms: int
    title: str
    location: Optional[str] = None
    video_link: Optional[str] = None
    calendar_color: Optional[str] = None
    is_all_day: bool = False
    is_declined: bool = False
    is_tentative: bool = False
    is_needs_response: bool = False

    @classmethod
    def from_instance(cls, instance: EventInstance) -> "EventPayload":
        return cls(
            start_ms=to_epoch_ms(instance.effective_start),
            end_ms=to_epoch_ms(instance.effective_end),
            title=instance.title,
            location=instance.location,
            video_link=instance.video_link,
            calendar_color=instance.source_color,
            is_all_day=instance.is_all_day,
            is_declined=instance.is_declined,
            is_tentative=instance.is_tentative,
            is_needs_response=instance.is_needs_response,
        )


class RefreshPayload(_PayloadModel):
    next_meeting: Optional[NextMeetingPayload] = None
    events: list[EventPayload] = []

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def instance_sort_key(instance: EventInstance) -> tuple:
    """Stable ordering for published instances."""
    return (
        instance.effective_start,
        instance.effective_end,
        instance.title,
        instance.series_uid,
        instance.source_id or "",
    )


def build_payload(
    next_meeting: Optional[EventInstance],
    instances: list[EventInstance],
) -> RefreshPayload:
    """Build the payload; events are ordered by start, end, title and identity."""
    return RefreshPayload(
        next_meeting=NextMeetingPayload.from_instance(next_meeting) if next_meeting else None,
        events=[EventPayload.from_instance(i) for i in sorted(instances, key=instance_sort_key)],
    )


EMPTY_PAYLOAD = RefreshPayload().to_json()


class ResultPublisher:
    """Encodes refresh results and fans them out to listeners.

    Instances are callable with ``(next_meeting, instances)`` so they can be
    passed directly as the orchestrator's ``on_result_ready`` callback.
    """

    def __init__(self) -> None:
        self._listeners: list[PayloadListener] = []
        self._last_payload = EMPTY_PAYLOAD
        self.publish_count = 0

    @property
    def last_payload(self) -> str:
        return self._last_payload

    def add_listener(self, listener: PayloadListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: PayloadListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, next_meeting: Optional[EventInstance], instances: list[EventInstance]) -> str:
        """Encode and publish one result.

        Returns:
            The JSON payload that was published
        """
        payload = build_payload(next_meeting, instances).to_json()
        self._last_payload = payload
        self.publish_count += 1
        logger.debug("Publishing payload with %d events", len(instances))

        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:
                logger.exception("Payload listener %r failed", listener)
        return payload

    __call__ = publish
