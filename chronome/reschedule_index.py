"""Reschedule index: per-source recurrence anomalies for today's date.

A backend's range query reports a detached override at its recurrence
anchor, not at the date it was moved to. This module runs one targeted query
per source for every object carrying recurrence information and records, for
the cached date:

- occurrences anchored today but moved to another day (to be suppressed)
- occurrences anchored on another day but moved to today (to be injected)
"""

import datetime
import logging
from typing import Optional

from .async_utils import CancellationToken
from .backend import CalendarBackend, ClientHandle
from .exceptions import ParseError, TransportError
from .ical_fields import rederive_occurrence_times
from .models import CalendarSourceRef, EventInstance, RawOccurrence, RescheduleCacheEntry
from .normalizer import InstanceNormalizer
from .timezone_utils import DayWindow, date_key

logger = logging.getLogger(__name__)


def series_key(uid: str, anchor_date_key: str) -> str:
    """Key of an occurrence in ``moved_away_from_today``."""
    return f"{uid}:{anchor_date_key}"


def classify_anomalies(
    candidates: list[RawOccurrence],
    source: CalendarSourceRef,
    window: DayWindow,
    local_tz: datetime.tzinfo,
    normalizer: Optional[InstanceNormalizer] = None,
) -> RescheduleCacheEntry:
    """Classify anomaly candidates against the window's date.

    Anchor and true dates are the local calendar dates of the values
    re-derived from each object's encoded form. Objects without an anchor
    (series masters) and objects whose encoding is malformed are skipped.

    Args:
        candidates: Result of the backend's anomaly query
        source: Source the candidates belong to
        window: Today's window
        local_tz: Local timezone
        normalizer: Normalizer for injected instances

    Returns:
        Fully populated cache entry for ``window.date_key``
    """
    normalizer = normalizer or InstanceNormalizer()
    today = window.date_key
    moved_away: dict[str, str] = {}
    moved_into: list[EventInstance] = []

    for raw in candidates:
        if not raw.owner_uid:
            continue
        try:
            times = rederive_occurrence_times(raw.raw_encoded_form, local_tz)
        except ParseError as e:
            logger.debug("Skipping anomaly candidate %s: %s", raw.owner_uid, e)
            continue

        if times.anchor is not None:
            anchor = times.anchor.value
        elif raw.recurrence_anchor is not None:
            anchor = raw.recurrence_anchor.astimezone(local_tz)
        else:
            continue

        if times.start is not None:
            start = times.start.value
        elif raw.declared_start is not None:
            start = raw.declared_start.astimezone(local_tz)
        else:
            continue

        anchor_key = date_key(anchor.date())
        true_key = date_key(start.date())

        if anchor_key == today and true_key != today:
            moved_away[series_key(raw.owner_uid, anchor_key)] = true_key
            logger.debug("Occurrence %s moved away from %s to %s", raw.owner_uid, anchor_key, true_key)
        elif anchor_key != today and true_key == today:
            end = times.end.value if times.end is not None else None
            try:
                instance = normalizer.normalize(
                    raw.raw_encoded_form,
                    raw.owner_uid,
                    start,
                    end,
                    source,
                    anchor=anchor,
                    is_date_only=times.start.is_date_only if times.start else None,
                )
            except ParseError as e:
                logger.debug("Skipping moved-in occurrence %s: %s", raw.owner_uid, e)
                continue
            moved_into.append(instance)
            logger.debug("Occurrence %s moved into %s from %s", raw.owner_uid, true_key, anchor_key)

    return RescheduleCacheEntry(
        date_key=today,
        moved_away_from_today=moved_away,
        moved_into_today=tuple(moved_into),
    )


async def build_reschedule_entry(
    backend: CalendarBackend,
    client: ClientHandle,
    source: CalendarSourceRef,
    window: DayWindow,
    local_tz: datetime.tzinfo,
    normalizer: Optional[InstanceNormalizer] = None,
    token: Optional[CancellationToken] = None,
) -> Optional[RescheduleCacheEntry]:
    """Query a source for anomaly candidates and build today's entry.

    Returns:
        The entry; an empty entry on transport failure; None if cancelled
    """
    try:
        query = backend.query_anomaly_candidates(client)
        if token is not None:
            candidates = await token.run(query)
            if candidates is None:
                return None
        else:
            candidates = await query
    except TransportError as e:
        logger.debug("Anomaly query failed for source %s: %s", source.source_id, e)
        return RescheduleCacheEntry.empty(window.date_key)

    return classify_anomalies(candidates, source, window, local_tz, normalizer)


class RescheduleCache:
    """Reschedule entries keyed by source for a single calendar date.

    Every invalidation bumps a generation; an entry built under an older
    generation is discarded by ``store`` so a stored entry never predates the
    latest change notification of its source.
    """

    def __init__(self) -> None:
        self._date_key: Optional[str] = None
        self._entries: dict[str, RescheduleCacheEntry] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0

    @property
    def date_key(self) -> Optional[str]:
        return self._date_key

    def __len__(self) -> int:
        return len(self._entries)

    def ensure_date(self, key: str) -> bool:
        """Switch to ``key``, clearing every entry if the date changed.

        Returns:
            True if the cache was cleared
        """
        if self._date_key == key:
            return False
        if self._date_key is not None:
            logger.debug("Date changed %s -> %s; clearing reschedule cache", self._date_key, key)
        self._date_key = key
        self.clear()
        return True

    def get(self, source_id: str) -> Optional[RescheduleCacheEntry]:
        return self._entries.get(source_id)

    def generation(self, source_id: str) -> tuple[int, int]:
        """Snapshot to pass back to ``store`` once a build completes."""
        return (self._epoch, self._generations.get(source_id, 0))

    def store(self, source_id: str, entry: RescheduleCacheEntry, generation: tuple[int, int]) -> bool:
        """Store an entry unless it is stale.

        Returns:
            True if stored; False if the source was invalidated during the
            build or the entry is for another date
        """
        if generation != self.generation(source_id) or entry.date_key != self._date_key:
            logger.debug("Discarding stale reschedule entry for source %s", source_id)
            return False
        self._entries[source_id] = entry
        return True

    def invalidate(self, source_id: str) -> None:
        """Drop a source's entry after it reported a change."""
        self._entries.pop(source_id, None)
        self._generations[source_id] = self._generations.get(source_id, 0) + 1

    def clear(self) -> None:
        self._entries.clear()
        self._epoch += 1
