"""iCalendar feed backend.

Serves the CalendarBackend protocol from iCalendar feeds, either http(s) URLs
fetched through the shared httpx client or local ``.ics`` files.

Recurrence expansion follows a CalDAV server's range query: series masters are
expanded with ``dateutil.rrule`` (EXDATE/RDATE honoured, overridden
occurrences suppressed) and detached overrides are reported when their
recurrence anchor falls in the window, at the anchor's time. Overrides moved
into the window from another day are therefore not reported here; the
pipeline's reschedule index finds them through ``query_anomaly_candidates``.
"""

from __future__ import annotations

import asyncio
import datetime
import hashlib
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import httpx
from dateutil.rrule import rruleset, rrulestr
from icalendar import Calendar

from ..async_utils import run_blocking
from ..config_loader import Config, SourceDefinition
from ..exceptions import TransportError
from ..http_client import get_shared_client, record_client_error, record_client_success
from ..models import CalendarSourceRef, ChangeKind, ChangeNotification, RawOccurrence
from ..timezone_utils import local_timezone

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 60.0
HTTP_CLIENT_ID = "ics_feeds"


@dataclass
class FeedClient:
    """Connection state of one feed."""

    source: CalendarSourceRef
    location: str
    calendar: Any
    content_hash: str


def _is_url(location: str) -> bool:
    return location.lower().startswith(("http://", "https://"))


def _to_aware(value: Any, tz: datetime.tzinfo) -> datetime.datetime:
    """DATE values become local midnight; floating values take ``tz``."""
    if not isinstance(value, datetime.datetime):
        return datetime.datetime(value.year, value.month, value.day, tzinfo=tz)
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def _decoded(component: Any, name: str) -> Optional[Any]:
    if name not in component:
        return None
    try:
        return component.decoded(name)
    except (ValueError, KeyError) as e:
        logger.debug("Cannot decode %s of %s: %s", name, component.get("UID"), e)
        return None


def _date_values(component: Any, name: str) -> list[Any]:
    """Collect the dates of every EXDATE/RDATE property on a component."""
    props = component.get(name)
    if props is None:
        return []
    if not isinstance(props, list):
        props = [props]
    values = []
    for prop in props:
        for item in getattr(prop, "dts", []):
            values.append(item.dt)
    return values


def _duration(component: Any, start: Any) -> datetime.timedelta:
    end = _decoded(component, "DTEND")
    if end is not None and type(end) is type(start):
        if isinstance(start, datetime.datetime) and (start.tzinfo is None) != (end.tzinfo is None):
            return datetime.timedelta(0)
        return end - start
    duration = _decoded(component, "DURATION")
    if isinstance(duration, datetime.timedelta):
        return duration
    if not isinstance(start, datetime.datetime):
        return datetime.timedelta(days=1)
    return datetime.timedelta(0)


def _raw_form(component: Any) -> str:
    return component.to_ical().decode("utf-8")


def _uid(component: Any) -> str:
    uid = component.get("UID")
    return str(uid) if uid is not None else ""


def describe_component(component: Any, tz: datetime.tzinfo) -> Optional[RawOccurrence]:
    """Report a VEVENT as stored, without expansion."""
    start = _decoded(component, "DTSTART")
    if start is None:
        return None
    anchor = _decoded(component, "RECURRENCE-ID")
    aware_start = _to_aware(start, tz)
    return RawOccurrence(
        owner_uid=_uid(component),
        recurrence_anchor=_to_aware(anchor, tz) if anchor is not None else None,
        declared_start=aware_start,
        declared_end=aware_start + _duration(component, start),
        raw_encoded_form=_raw_form(component),
    )


def anomaly_candidates(calendar: Any, tz: datetime.tzinfo) -> list[RawOccurrence]:
    """Every VEVENT that has an RRULE or a RECURRENCE-ID."""
    candidates = []
    for component in calendar.walk("VEVENT"):
        if "RRULE" not in component and "RECURRENCE-ID" not in component:
            continue
        occurrence = describe_component(component, tz)
        if occurrence is not None:
            candidates.append(occurrence)
    return candidates


def _build_ruleset(component: Any, start: Any, tz: datetime.tzinfo) -> tuple[rruleset, Optional[datetime.tzinfo]]:
    """Build the occurrence set of a master.

    Returns:
        (ruleset, zone) where zone is None when the set yields aware values and
        the zone to attach when it yields naive wall-clock values
    """
    rrules = component.get("RRULE")
    if not isinstance(rrules, list):
        rrules = [rrules]
    rule_text = "\n".join("RRULE:" + rule.to_ical().decode("utf-8") for rule in rrules)

    dtstart = start if isinstance(start, datetime.datetime) else datetime.datetime(start.year, start.month, start.day)
    if dtstart.tzinfo is not None:
        try:
            return rrulestr(rule_text, dtstart=dtstart, forceset=True), None
        except ValueError:
            # UNTIL given as floating time on a zoned series
            zone = dtstart.tzinfo
            naive = dtstart.replace(tzinfo=None)
            return rrulestr(rule_text, dtstart=naive, forceset=True, ignoretz=True), zone

    try:
        return rrulestr(rule_text, dtstart=dtstart, forceset=True), tz
    except ValueError:
        # UNTIL given in UTC on a floating series
        return rrulestr(rule_text, dtstart=dtstart, forceset=True, ignoretz=True), tz


def _as_rule_value(value: Any, master_start: datetime.datetime, zone: Optional[datetime.tzinfo]) -> datetime.datetime:
    """Convert an EXDATE/RDATE/RECURRENCE-ID value to the ruleset's flavour."""
    if not isinstance(value, datetime.datetime):
        value = datetime.datetime.combine(value, master_start.time().replace(tzinfo=None))
        value = value.replace(tzinfo=master_start.tzinfo)
    if zone is None:
        return value if value.tzinfo is not None else value.replace(tzinfo=master_start.tzinfo)
    if value.tzinfo is not None:
        return value.astimezone(zone).replace(tzinfo=None)
    return value


def expand_master(
    component: Any,
    overridden: set[datetime.datetime],
    window_start: datetime.datetime,
    window_end: datetime.datetime,
) -> list[RawOccurrence]:
    """Expand one series master over the window.

    Args:
        component: VEVENT with an RRULE
        overridden: Aware recurrence anchors of this series' detached overrides
        window_start: Aware window start
        window_end: Aware window end

    Returns:
        Occurrences overlapping the window, reported with the master's raw form
    """
    tz = window_start.tzinfo
    start = _decoded(component, "DTSTART")
    if start is None:
        return []

    duration = _duration(component, start)
    aware_master_start = _to_aware(start, tz)
    try:
        rule_set, zone = _build_ruleset(component, start, tz)
    except (ValueError, TypeError) as e:
        logger.debug("Skipping unsupported RRULE on %s: %s", _uid(component), e)
        return []

    for value in _date_values(component, "EXDATE"):
        rule_set.exdate(_as_rule_value(value, aware_master_start, zone))
    for value in _date_values(component, "RDATE"):
        if isinstance(value, (datetime.date, datetime.datetime)):
            rule_set.rdate(_as_rule_value(value, aware_master_start, zone))

    lookback = max(duration, datetime.timedelta(0))
    if zone is None:
        lower, upper = window_start - lookback, window_end
    else:
        lower = (window_start - lookback).astimezone(zone).replace(tzinfo=None)
        upper = window_end.astimezone(zone).replace(tzinfo=None)

    occurrences = []
    raw = _raw_form(component)
    uid = _uid(component)
    for occurrence in rule_set.between(lower, upper, inc=True):
        occ_start = occurrence if zone is None else occurrence.replace(tzinfo=zone)
        if occ_start in overridden:
            continue
        occ_end = occ_start + duration
        visible_end = occ_end if occ_end > occ_start else occ_start + datetime.timedelta(hours=1)
        if occ_start <= window_end and visible_end > window_start:
            occurrences.append(
                RawOccurrence(
                    owner_uid=uid,
                    declared_start=occ_start,
                    declared_end=occ_end,
                    raw_encoded_form=raw,
                )
            )
    return occurrences


def expand_calendar(
    calendar: Any,
    window_start: datetime.datetime,
    window_end: datetime.datetime,
) -> list[RawOccurrence]:
    """Range query over a parsed calendar.

    Singles are reported when they overlap the window, masters are expanded,
    and detached overrides are reported at their anchor when the anchor falls
    in the window.
    """
    tz = window_start.tzinfo
    components = list(calendar.walk("VEVENT"))

    overridden: dict[str, set[datetime.datetime]] = {}
    for component in components:
        anchor = _decoded(component, "RECURRENCE-ID")
        if anchor is not None:
            overridden.setdefault(_uid(component), set()).add(_to_aware(anchor, tz))

    results: list[RawOccurrence] = []
    for component in components:
        if "RECURRENCE-ID" in component:
            occurrence = describe_component(component, tz)
            anchor = occurrence.recurrence_anchor if occurrence else None
            if occurrence is None or anchor is None or not window_start <= anchor <= window_end:
                continue
            duration = occurrence.declared_end - occurrence.declared_start
            results.append(
                occurrence.model_copy(update={"declared_start": anchor, "declared_end": anchor + duration})
            )
        elif "RRULE" in component:
            results.extend(expand_master(component, overridden.get(_uid(component), set()), window_start, window_end))
        else:
            occurrence = describe_component(component, tz)
            if occurrence is None:
                continue
            end = occurrence.declared_end
            if end <= occurrence.declared_start:
                end = occurrence.declared_start + datetime.timedelta(hours=1)
            if occurrence.declared_start <= window_end and end > window_start:
                results.append(occurrence)
    return results


def parse_feed(text: str, location: str) -> Any:
    try:
        return Calendar.from_ical(text)
    except ValueError as e:
        raise TransportError(f"Feed {location} is not valid iCalendar: {e}") from e


class IcsFeedBackend:
    """CalendarBackend over iCalendar feeds."""

    def __init__(
        self,
        sources: list[SourceDefinition],
        http_client: Optional[httpx.AsyncClient] = None,
        local_tz: Optional[datetime.tzinfo] = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ):
        """Initialize the feed backend.

        Args:
            sources: Feed definitions
            http_client: Client to fetch URLs with; the shared client when None
            local_tz: Zone for floating and DATE values
            poll_interval_seconds: Interval at which change subscriptions poll feeds
        """
        self._definitions = {source.source_id: source for source in sources}
        self._http_client = http_client
        self.local_tz = local_tz or local_timezone()
        self.poll_interval_seconds = poll_interval_seconds

    @classmethod
    def from_config(cls, config: Config, http_client: Optional[httpx.AsyncClient] = None) -> IcsFeedBackend:
        return cls(
            config.sources,
            http_client=http_client,
            local_tz=local_timezone(config.timezone),
            poll_interval_seconds=config.change_poll_seconds,
        )

    def list_sources(self) -> list[CalendarSourceRef]:
        return [definition.to_source_ref() for definition in self._definitions.values()]

    async def connect(self, source: CalendarSourceRef) -> FeedClient:
        definition = self._definitions.get(source.source_id)
        if definition is None:
            raise TransportError(f"Unknown source {source.source_id}", source_id=source.source_id)

        text = await self._load(definition.url, source.source_id)
        calendar = await run_blocking(parse_feed, text, definition.url)
        logger.debug("Loaded feed %s (%d bytes)", source.source_id, len(text))
        return FeedClient(
            source=source,
            location=definition.url,
            calendar=calendar,
            content_hash=_content_hash(text),
        )

    async def query_anomaly_candidates(self, client: FeedClient) -> list[RawOccurrence]:
        return await run_blocking(anomaly_candidates, client.calendar, self.local_tz)

    async def expand_recurrences(
        self,
        client: FeedClient,
        window_start: datetime.datetime,
        window_end: datetime.datetime,
    ) -> list[RawOccurrence]:
        return await run_blocking(expand_calendar, client.calendar, window_start, window_end)

    async def subscribe_changes(self, client: FeedClient) -> AsyncIterator[ChangeNotification]:
        """Poll the feed and yield ``modified`` whenever its content changes."""
        while True:
            await asyncio.sleep(self.poll_interval_seconds)
            try:
                changed = await self._reload(client)
            except TransportError as e:
                logger.debug("Polling %s failed: %s", client.source.source_id, e)
                continue
            if changed:
                yield ChangeNotification(kind=ChangeKind.MODIFIED)

    async def refresh(self, client: FeedClient) -> None:
        """Re-fetch the feed now."""
        try:
            await self._reload(client)
        except TransportError as e:
            logger.debug("Refresh of %s failed: %s", client.source.source_id, e)

    async def _reload(self, client: FeedClient) -> bool:
        text = await self._load(client.location, client.source.source_id)
        content_hash = _content_hash(text)
        if content_hash == client.content_hash:
            return False
        client.calendar = await run_blocking(parse_feed, text, client.location)
        client.content_hash = content_hash
        logger.debug("Feed %s changed", client.source.source_id)
        return True

    async def _load(self, location: str, source_id: str) -> str:
        if _is_url(location):
            return await self._fetch(location, source_id)

        path = Path(location[len("file://"):] if location.startswith("file://") else location)
        try:
            return await run_blocking(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TransportError(f"Cannot read {path}: {e}", source_id=source_id) from e

    async def _fetch(self, url: str, source_id: str) -> str:
        shared = self._http_client is None
        client = self._http_client or await get_shared_client(HTTP_CLIENT_ID)
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {e.response.status_code} fetching {source_id}", source_id=source_id
            ) from e
        except httpx.HTTPError as e:
            if shared:
                await record_client_error(HTTP_CLIENT_ID)
            raise TransportError(f"Error fetching {source_id}: {e}", source_id=source_id) from e

        if shared:
            await record_client_success(HTTP_CLIENT_ID)
        return response.text


def _content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
