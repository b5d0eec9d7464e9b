"""Source catalog filtering and shared-calendar deduplication."""

import logging
from collections.abc import Iterable

from .attendee_parser import normalize_address
from .models import CalendarSourceRef

logger = logging.getLogger(__name__)

SCORE_OWNER = 3
SCORE_WRITABLE = 2
SCORE_READ_ONLY = 1


def filter_enabled_sources(
    sources: Iterable[CalendarSourceRef],
    enabled_calendars: Iterable[str] = (),
) -> list[CalendarSourceRef]:
    """Keep enabled sources, restricted to ``enabled_calendars`` when it is non-empty."""
    wanted = set(enabled_calendars)
    selected = [
        source for source in sources if source.enabled and (not wanted or source.source_id in wanted)
    ]
    logger.debug("Selected %d enabled sources", len(selected))
    return selected


def privilege_score(source: CalendarSourceRef) -> int:
    """Score how privileged the account's view of a calendar is.

    Returns:
        3 when the account owns the calendar, 2 when it can edit, 1 otherwise
    """
    if (
        source.calendar_id
        and source.account_identity
        and normalize_address(source.calendar_id) == normalize_address(source.account_identity)
    ):
        return SCORE_OWNER
    if source.writable:
        return SCORE_WRITABLE
    return SCORE_READ_ONLY


def deduplicate_sources(sources: list[CalendarSourceRef]) -> list[CalendarSourceRef]:
    """Keep only the most privileged source per shared calendar.

    Sources are grouped by ``calendar_id``; within a group the highest score
    wins, ties going to the first listed. Sources without a calendar id are
    always kept. Input order is preserved.

    Args:
        sources: Connected sources

    Returns:
        Deduplicated sources
    """
    best: dict[str, CalendarSourceRef] = {}
    for source in sources:
        if not source.calendar_id:
            continue
        current = best.get(source.calendar_id)
        if current is None or privilege_score(source) > privilege_score(current):
            best[source.calendar_id] = source

    kept = [s for s in sources if not s.calendar_id or best[s.calendar_id] is s]
    if len(kept) != len(sources):
        logger.debug("Dropped %d shared calendar duplicates", len(sources) - len(kept))
    return kept
