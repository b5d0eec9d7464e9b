"""Instance generation: today's occurrences for one source.

Expands the source's recurrences over today's window, corrects detached
overrides using the reschedule index, injects overrides moved into today and
applies the final overlap filter.
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
from .reschedule_index import series_key
from .timezone_utils import DayWindow, date_key

logger = logging.getLogger(__name__)


def _local(dt: Optional[datetime.datetime], local_tz: datetime.tzinfo) -> Optional[datetime.datetime]:
    return dt.astimezone(local_tz) if dt is not None else None


def _resolve_anchored(
    raw: RawOccurrence,
    source: CalendarSourceRef,
    entry: RescheduleCacheEntry,
    local_tz: datetime.tzinfo,
    normalizer: InstanceNormalizer,
) -> Optional[EventInstance]:
    times = rederive_occurrence_times(raw.raw_encoded_form, local_tz)
    anchor = times.anchor.value if times.anchor is not None else _local(raw.recurrence_anchor, local_tz)
    if anchor is None:
        return None

    if series_key(raw.owner_uid, date_key(anchor.date())) in entry.moved_away_from_today:
        logger.debug("Suppressing %s: moved away from its anchor date", raw.owner_uid)
        return None

    declared_start = _local(raw.declared_start, local_tz)
    declared_end = _local(raw.declared_end, local_tz)
    start = times.start.value if times.start is not None else declared_start
    if start is None:
        return None

    if times.end is not None:
        end: Optional[datetime.datetime] = times.end.value
    elif declared_start is not None and declared_end is not None:
        # Keep the backend-reported duration
        end = start + (declared_end - declared_start)
    else:
        end = None

    return normalizer.normalize(
        raw.raw_encoded_form,
        raw.owner_uid,
        start,
        end,
        source,
        anchor=anchor,
        is_date_only=times.start.is_date_only if times.start is not None else None,
    )


def _resolve_plain(
    raw: RawOccurrence,
    source: CalendarSourceRef,
    local_tz: datetime.tzinfo,
    normalizer: InstanceNormalizer,
) -> Optional[EventInstance]:
    start = _local(raw.declared_start, local_tz)
    end = _local(raw.declared_end, local_tz)
    if start is None:
        times = rederive_occurrence_times(raw.raw_encoded_form, local_tz)
        if times.start is None:
            return None
        start = times.start.value
        end = times.end.value if times.end is not None else None
    return normalizer.normalize(raw.raw_encoded_form, raw.owner_uid, start, end, source)


def resolve_occurrences(
    occurrences: list[RawOccurrence],
    source: CalendarSourceRef,
    window: DayWindow,
    local_tz: datetime.tzinfo,
    entry: RescheduleCacheEntry,
    normalizer: Optional[InstanceNormalizer] = None,
) -> list[EventInstance]:
    """Turn expanded occurrences into today's instances for one source.

    Args:
        occurrences: Result of the backend's expansion query
        source: Source the occurrences belong to
        window: Today's window
        local_tz: Local timezone
        entry: Reschedule entry of this source for today
        normalizer: Instance normalizer

    Returns:
        Instances overlapping the window, backend order followed by injected overrides
    """
    normalizer = normalizer or InstanceNormalizer()
    instances: list[EventInstance] = []

    for raw in occurrences:
        if not raw.owner_uid:
            continue
        try:
            if raw.recurrence_anchor is not None:
                instance = _resolve_anchored(raw, source, entry, local_tz, normalizer)
            else:
                instance = _resolve_plain(raw, source, local_tz, normalizer)
        except ParseError as e:
            logger.debug("Skipping occurrence %s: %s", raw.owner_uid, e)
            continue
        if instance is not None:
            instances.append(instance)

    instances.extend(entry.moved_into_today)

    return [i for i in instances if window.overlaps(i.effective_start, i.effective_end)]


async def generate_today_instances(
    backend: CalendarBackend,
    client: ClientHandle,
    source: CalendarSourceRef,
    window: DayWindow,
    local_tz: datetime.tzinfo,
    entry: RescheduleCacheEntry,
    normalizer: Optional[InstanceNormalizer] = None,
    token: Optional[CancellationToken] = None,
) -> list[EventInstance]:
    """Expand today's occurrences for one source and resolve them.

    A transport failure or cancellation yields an empty list.
    """
    try:
        query = backend.expand_recurrences(client, window.start, window.end)
        if token is not None:
            occurrences = await token.run(query, default=[])
            if token.cancelled:
                return []
        else:
            occurrences = await query
    except TransportError as e:
        logger.debug("Expansion query failed for source %s: %s", source.source_id, e)
        return []

    return resolve_occurrences(occurrences or [], source, window, local_tz, entry, normalizer)
