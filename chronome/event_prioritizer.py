"""Next-meeting selection for the highlighted meeting."""

from __future__ import annotations

import datetime
import logging

from .constants import CURRENT_MEETING_CUTOFF, EVENT_TYPE_DECLINED, EVENT_TYPE_REGULAR, EVENT_TYPE_TENTATIVE
from .models import EventInstance, SelectionOptions

logger = logging.getLogger(__name__)


class EventPrioritizer:
    """Selects the single meeting to surface under a rolling-window rule."""

    def __init__(self, options: SelectionOptions | None = None):
        """Initialize event prioritizer.

        Args:
            options: Enabled event types and show-current-meeting toggle
        """
        self.options = options or SelectionOptions()

    def is_candidate(self, instance: EventInstance) -> bool:
        """Apply the event type filter.

        Business rules:
        1. All-day events are never highlighted
        2. Declined events need the "declined" type
        3. Tentative events need the "tentative" type
        4. Everything else (including needs-response) needs the "regular" type
        """
        event_types = self.options.event_types
        if instance.is_all_day:
            return False
        if instance.is_declined:
            return EVENT_TYPE_DECLINED in event_types
        if instance.is_tentative:
            return EVENT_TYPE_TENTATIVE in event_types
        return EVENT_TYPE_REGULAR in event_types

    def find_next_meeting(
        self,
        instances: list[EventInstance],
        now: datetime.datetime,
    ) -> EventInstance | None:
        """Find the meeting to highlight.

        A meeting in progress is current only while more than five minutes
        remain; among current meetings the one ending soonest wins. Otherwise
        the earliest meeting starting after ``now`` is returned.

        Args:
            instances: Classified instances of today
            now: Current local time

        Returns:
            Selected instance or None
        """
        candidates = [i for i in instances if self.is_candidate(i)]

        if self.options.show_current_meeting:
            cutoff = now + CURRENT_MEETING_CUTOFF
            current = [i for i in candidates if i.effective_start <= now and i.effective_end > cutoff]
            if current:
                selected = min(current, key=lambda i: i.effective_end)
                logger.debug("Current meeting: %r ends %s", selected.title, selected.effective_end)
                return selected

        upcoming = [i for i in candidates if i.effective_start > now]
        if not upcoming:
            return None

        selected = min(upcoming, key=lambda i: i.effective_start)
        logger.debug("Next meeting: %r starts %s", selected.title, selected.effective_start)
        return selected


def select_next_meeting(
    instances: list[EventInstance],
    options: SelectionOptions,
    now: datetime.datetime,
) -> EventInstance | None:
    """Select the next or current meeting (convenience function)."""
    return EventPrioritizer(options).find_next_meeting(instances, now)
