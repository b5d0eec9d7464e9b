"""Refresh orchestration for chronome.

Coordinates one refresh run end to end:

1. Re-derive today's window and reset the reschedule cache on a date change
2. Connect every enabled source concurrently (bounded by the connect timeout)
3. Drop shared-calendar duplicates among connected sources
4. Per source, build or reuse the reschedule entry and generate today's instances
5. Deduplicate, classify and select the next meeting
6. Publish through ``on_result_ready``

At most one run is in flight. A request arriving during a run marks the run
pending; the run then repeats exactly once. Change notifications are
debounced; a timer requests periodic refreshes.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Callable
from enum import Enum
from typing import Optional

from .async_utils import CancellationToken
from .backend import CalendarBackend, ClientHandle
from .classifier import classify_instances
from .config_loader import Config
from .constants import SYNC_DELAY_SECONDS
from .event_merger import deduplicate_instances
from .event_prioritizer import select_next_meeting
from .exceptions import PipelineError, TransportError
from .instance_generator import generate_today_instances
from .models import CalendarSourceRef, ChangeNotification, EventInstance, SelectionOptions
from .normalizer import InstanceNormalizer
from .publisher import build_payload, instance_sort_key
from .reschedule_index import RescheduleCache, build_reschedule_entry
from .source_catalog import deduplicate_sources, filter_enabled_sources
from .timezone_utils import DayWindow, TimeProvider, local_timezone, today_window

logger = logging.getLogger(__name__)

ResultCallback = Callable[[Optional[EventInstance], list[EventInstance]], None]


class RefreshState(Enum):
    """Single-flight states of the refresh pipeline."""

    IDLE = "idle"
    RUNNING = "running"
    RUNNING_PENDING = "running_pending"


class SingleFlight:
    """IDLE -> RUNNING -> RUNNING_PENDING -> IDLE state machine."""

    def __init__(self) -> None:
        self.state = RefreshState.IDLE

    def try_begin(self) -> bool:
        """Claim the run, or mark a pending rerun if one is in flight.

        Returns:
            True if the caller should start a run
        """
        if self.state is RefreshState.IDLE:
            self.state = RefreshState.RUNNING
            return True
        self.state = RefreshState.RUNNING_PENDING
        return False

    def finish(self) -> bool:
        """Complete a run.

        Returns:
            True if a rerun was pending; the state stays RUNNING for it
        """
        if self.state is RefreshState.RUNNING_PENDING:
            self.state = RefreshState.RUNNING
            return True
        self.state = RefreshState.IDLE
        return False

    def reset(self) -> None:
        self.state = RefreshState.IDLE


def resolve_instances(
    instances: list[EventInstance],
    options: SelectionOptions,
    now: datetime.datetime,
) -> tuple[Optional[EventInstance], list[EventInstance]]:
    """Deduplicate, classify and select over all sources' instances.

    Returns:
        (next meeting or None, classified instances in stable order)

    Raises:
        PipelineError: Any unexpected failure in the pure stages
    """
    try:
        classified = classify_instances(deduplicate_instances(instances))
        classified.sort(key=instance_sort_key)
        return select_next_meeting(classified, options, now), classified
    except Exception as e:
        raise PipelineError(f"Failed to resolve today's meetings: {e}") from e


class RefreshOrchestrator:
    """Owns caches, connections, timers and the single-flight refresh."""

    def __init__(
        self,
        backend: CalendarBackend,
        config: Optional[Config] = None,
        on_result_ready: Optional[ResultCallback] = None,
        time_provider: Optional[TimeProvider] = None,
        normalizer: Optional[InstanceNormalizer] = None,
    ):
        """Initialize refresh orchestrator.

        Args:
            backend: Calendar backend collaborator
            config: Configuration (defaults when None)
            on_result_ready: Called once per completed refresh with the next meeting
                and all of today's instances
            time_provider: Clock; defaults to the configured local timezone
            normalizer: Instance normalizer shared by the pipeline stages
        """
        self.backend = backend
        self.config = config or Config()
        self.on_result_ready = on_result_ready
        self.time_provider = time_provider or TimeProvider(local_timezone(self.config.timezone))
        self.normalizer = normalizer or InstanceNormalizer()

        self._token = CancellationToken()
        self._single_flight = SingleFlight()
        self._cache = RescheduleCache()
        self._clients: dict[str, ClientHandle] = {}
        self._sources: dict[str, CalendarSourceRef] = {}
        self._subscriptions: dict[str, asyncio.Task] = {}
        self._refresh_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._last_result: tuple[Optional[EventInstance], list[EventInstance]] = (None, [])
        self.run_count = 0
        self.publish_count = 0

    @property
    def local_tz(self) -> datetime.tzinfo:
        return self.time_provider.local_tz

    @property
    def state(self) -> RefreshState:
        return self._single_flight.state

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    @property
    def reschedule_cache(self) -> RescheduleCache:
        return self._cache

    @property
    def connected_source_ids(self) -> list[str]:
        return list(self._clients)

    @property
    def last_payload(self) -> str:
        """JSON payload of the last published result (empty before the first)."""
        return build_payload(*self._last_result).to_json()

    async def start(self) -> None:
        """Start the periodic timer and request the initial refresh."""
        self._restart_timer()
        self.request_refresh()

    def request_refresh(self) -> Optional[asyncio.Task]:
        """Request a refresh subject to the single-flight rule.

        Returns:
            The task of a newly started run, or None when the request was
            folded into the run in flight (or the orchestrator is shut down)
        """
        if self._token.cancelled:
            return None
        if not self._single_flight.try_begin():
            logger.debug("Refresh in flight; marked pending")
            return None
        self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_loop())
        return self._refresh_task

    async def refresh(self) -> None:
        """Request a refresh and wait for the in-flight run, including a pending rerun."""
        task = self.request_refresh() or self._refresh_task
        if task is not None and not task.done():
            await task

    async def manual_refresh(self) -> None:
        """Ask every connected backend client to resync, then refresh.

        Hints are spaced by a short delay so servers are not hit at once. A
        resync may replace the source's objects without any change
        notification, so each hinted source's reschedule entry is dropped.
        """
        for source_id, client in list(self._clients.items()):
            try:
                await self._token.run(self.backend.refresh(client))
            except Exception as e:
                logger.debug("Refresh hint for source %s failed: %s", source_id, e)
            self._cache.invalidate(source_id)
            if await self._token.sleep(SYNC_DELAY_SECONDS):
                return
        self.request_refresh()

    def notify_change(self, source_id: str, notification: Optional[ChangeNotification] = None) -> None:
        """A source's objects changed: drop its reschedule entry and debounce a refresh."""
        if self._token.cancelled:
            return
        kind = notification.kind.value if notification else "changed"
        logger.debug("Source %s reported %s", source_id, kind)
        self._cache.invalidate(source_id)
        self.schedule_refresh()

    def notify_source_changed(self, source_id: str) -> None:
        """The source catalog changed: clear all reschedule entries and reconnect the source."""
        if self._token.cancelled:
            return
        logger.debug("Source %s changed; clearing reschedule cache", source_id)
        self._cache.clear()
        self._forget_source(source_id)
        self.schedule_refresh()

    def schedule_refresh(self) -> None:
        """Debounce: coalesce bursts of triggers into one refresh request."""
        if self._token.cancelled:
            return
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self.config.debounce_seconds, self._debounce_fired)

    def update_config(self, config: Config) -> None:
        """Apply new settings: interval changes restart the timer, others refresh."""
        old = self.config
        self.config = config
        if config.timezone != old.timezone:
            self.time_provider = TimeProvider(local_timezone(config.timezone))
            self._cache.clear()
        if config.enabled_calendars != old.enabled_calendars and config.enabled_calendars:
            for source_id in list(self._clients):
                if source_id not in config.enabled_calendars:
                    logger.debug("Source %s no longer enabled; disconnecting", source_id)
                    self._forget_source(source_id)
                    self._cache.invalidate(source_id)
        if config.refresh_interval_seconds != old.refresh_interval_seconds:
            logger.debug("Refresh interval changed to %ss", config.refresh_interval_seconds)
            if self._timer_task is not None:
                self._restart_timer()
        if _without_interval(config) != _without_interval(old):
            self.request_refresh()

    async def shutdown(self) -> None:
        """Cancel everything this orchestrator owns and clear its caches."""
        self._token.cancel()
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

        tasks = [t for t in (self._timer_task, *self._subscriptions.values()) if t is not None]
        for task in tasks:
            task.cancel()
        if self._refresh_task is not None:
            tasks.append(self._refresh_task)
        await asyncio.gather(*tasks, return_exceptions=True)

        self._timer_task = None
        self._refresh_task = None
        self._subscriptions.clear()
        self._clients.clear()
        self._sources.clear()
        self._cache.clear()
        self._single_flight.reset()
        logger.debug("Refresh orchestrator shut down")

    def _debounce_fired(self) -> None:
        self._debounce_handle = None
        self.request_refresh()

    def _restart_timer(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
        self._timer_task = asyncio.get_running_loop().create_task(
            self._timer_loop(self.config.refresh_interval_seconds)
        )

    async def _timer_loop(self, interval: float) -> None:
        while not await self._token.sleep(interval):
            self.request_refresh()

    async def _refresh_loop(self) -> None:
        try:
            while True:
                await self._refresh_once()
                if not self._single_flight.finish() or self._token.cancelled:
                    break
                logger.debug("Running pending refresh")
        finally:
            self._single_flight.reset()

    async def _refresh_once(self) -> None:
        """One pipeline run; any failure publishes the unavailable result."""
        self.run_count += 1
        try:
            await self._run_pipeline()
        except Exception:
            # PipelineError from the pure stages or anything escaping the I/O steps
            logger.exception("Refresh pipeline failed; publishing unavailable result")
            self._publish(None, [])

    async def _run_pipeline(self) -> None:
        now = self.time_provider.now()
        window = today_window(now)
        self._cache.ensure_date(window.date_key)

        sources = filter_enabled_sources(self.backend.list_sources(), self.config.enabled_calendars)
        connected = await self._connect_sources(sources)
        if self._token.cancelled:
            return
        connected = deduplicate_sources(connected)

        results = await asyncio.gather(
            *(self._process_source(source, window) for source in connected),
            return_exceptions=True,
        )
        if self._token.cancelled:
            return

        instances: list[EventInstance] = []
        for source, result in zip(connected, results):
            if isinstance(result, BaseException):
                logger.debug("Source %s failed: %s", source.source_id, result)
                continue
            instances.extend(result)

        next_meeting, classified = resolve_instances(instances, self.config.selection_options(), now)
        logger.debug(
            "Refresh complete: %d sources, %d instances, next=%r",
            len(connected),
            len(classified),
            next_meeting.title if next_meeting else None,
        )
        self._publish(next_meeting, classified)

    async def _connect_sources(self, sources: list[CalendarSourceRef]) -> list[CalendarSourceRef]:
        """Ensure a client for each source; failures and timeouts are left out."""
        results = await asyncio.gather(
            *(self._ensure_client(source) for source in sources),
            return_exceptions=True,
        )
        connected = []
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.debug("Could not connect source %s: %s", source.source_id, result)
            elif result:
                connected.append(source)
        return connected

    async def _ensure_client(self, source: CalendarSourceRef) -> bool:
        if source.source_id in self._clients:
            self._sources[source.source_id] = source
            return True

        try:
            client = await self._token.run(
                asyncio.wait_for(self.backend.connect(source), timeout=self.config.connect_timeout_seconds)
            )
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Connecting to {source.source_id} timed out after {self.config.connect_timeout_seconds}s",
                source_id=source.source_id,
            ) from e

        if client is None or self._token.cancelled:
            return False

        self._clients[source.source_id] = client
        self._sources[source.source_id] = source
        self._subscribe(source.source_id, client)
        logger.debug("Connected source %s", source.source_id)
        return True

    async def _process_source(self, source: CalendarSourceRef, window: DayWindow) -> list[EventInstance]:
        client = self._clients.get(source.source_id)
        if client is None:
            return []

        entry = self._cache.get(source.source_id)
        if entry is None:
            generation = self._cache.generation(source.source_id)
            entry = await build_reschedule_entry(
                self.backend, client, source, window, self.local_tz, self.normalizer, self._token
            )
            if entry is None or self._token.cancelled:
                return []
            self._cache.store(source.source_id, entry, generation)

        return await generate_today_instances(
            self.backend, client, source, window, self.local_tz, entry, self.normalizer, self._token
        )

    def _subscribe(self, source_id: str, client: ClientHandle) -> None:
        self._subscriptions[source_id] = asyncio.get_running_loop().create_task(
            self._watch_changes(source_id, client)
        )

    async def _watch_changes(self, source_id: str, client: ClientHandle) -> None:
        try:
            async for notification in self.backend.subscribe_changes(client):
                if self._token.cancelled:
                    break
                self.notify_change(source_id, notification)
        except Exception as e:
            logger.debug("Change subscription for source %s ended: %s", source_id, e)

    def _forget_source(self, source_id: str) -> None:
        self._clients.pop(source_id, None)
        self._sources.pop(source_id, None)
        task = self._subscriptions.pop(source_id, None)
        if task is not None:
            task.cancel()

    def _publish(self, next_meeting: Optional[EventInstance], instances: list[EventInstance]) -> None:
        if self._token.cancelled:
            return
        self._last_result = (next_meeting, instances)
        self.publish_count += 1
        if self.on_result_ready is None:
            return
        try:
            self.on_result_ready(next_meeting, instances)
        except Exception:
            logger.exception("on_result_ready callback failed")


def _without_interval(config: Config) -> tuple:
    return (
        tuple(config.enabled_calendars),
        tuple(config.event_types),
        config.show_current_meeting,
        config.timezone,
    )
