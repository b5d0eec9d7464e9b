"""Classification of event instances: all-day flag and participation status."""

import datetime
import logging

from .attendee_parser import find_account_status
from .constants import ONE_DAY
from .models import EventInstance, ParticipationStatus

logger = logging.getLogger(__name__)

DECLINED_TITLE_MARKERS = ("declined:", "rejected:")
TENTATIVE_TITLE_MARKER = "tentative"


def is_all_day(instance: EventInstance) -> bool:
    """Date-only events, or events starting at local midnight lasting whole days."""
    if instance.is_date_only:
        return True

    start = instance.effective_start
    if (start.hour, start.minute, start.second, start.microsecond) != (0, 0, 0, 0):
        return False

    duration = instance.effective_end - instance.effective_start
    return duration >= ONE_DAY and duration % ONE_DAY == datetime.timedelta(0)


def title_status(title: str) -> ParticipationStatus:
    """Best-effort status from title prefixes some servers add on reply."""
    lowered = (title or "").lower()
    if any(marker in lowered for marker in DECLINED_TITLE_MARKERS):
        return ParticipationStatus.DECLINED
    if TENTATIVE_TITLE_MARKER in lowered or lowered.lstrip().startswith("?"):
        return ParticipationStatus.TENTATIVE
    return ParticipationStatus.UNKNOWN


def participation_status(instance: EventInstance) -> ParticipationStatus:
    """Resolve the owning account's participation status.

    Order of evidence:
    1. The attendee whose address matches the owning account, if it carries a PARTSTAT
    2. ``STATUS:TENTATIVE`` on the event
    3. Title heuristic
    """
    status = find_account_status(instance.attendees, instance.owner_account_identity)
    if status is not None and status != ParticipationStatus.UNKNOWN:
        return status

    if instance.event_status == "TENTATIVE":
        return ParticipationStatus.TENTATIVE

    return title_status(instance.title)


def classify_instance(instance: EventInstance) -> EventInstance:
    return instance.model_copy(
        update={
            "is_all_day": is_all_day(instance),
            "participation_status": participation_status(instance),
        }
    )


def classify_instances(instances: list[EventInstance]) -> list[EventInstance]:
    """Return classified copies of ``instances`` in the same order."""
    return [classify_instance(instance) for instance in instances]
