"""Shared fixtures for chronome tests.

Provides a deterministic local timezone, a settable clock, VEVENT/RawOccurrence
builders and an in-memory CalendarBackend fake.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator, Callable, Generator
from datetime import date, datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from chronome.config_loader import Config
from chronome.exceptions import TransportError
from chronome.models import CalendarSourceRef, ChangeNotification, EventInstance, RawOccurrence
from chronome.refresh_orchestrator import RefreshOrchestrator
from chronome.timezone_utils import TimeProvider

NEW_YORK = ZoneInfo("America/New_York")


def _dt_line(name: str, value: Any) -> str:
    if not isinstance(value, datetime):
        return f"{name};VALUE=DATE:{value:%Y%m%d}"
    if value.tzinfo is None:
        return f"{name}:{value:%Y%m%dT%H%M%S}"
    key = getattr(value.tzinfo, "key", None)
    if key:
        return f"{name};TZID={key}:{value:%Y%m%dT%H%M%S}"
    return f"{name}:{value.astimezone(timezone.utc):%Y%m%dT%H%M%SZ}"


def build_vevent(
    uid: str,
    start: Any,
    end: Any = None,
    summary: Optional[str] = "Meeting",
    recurrence_id: Any = None,
    rrule: Optional[str] = None,
    location: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
    attendees: tuple[tuple[str, str], ...] = (),
) -> str:
    """Build a VEVENT block with CRLF line endings."""
    lines = ["BEGIN:VEVENT", f"UID:{uid}", "DTSTAMP:20251201T000000Z", _dt_line("DTSTART", start)]
    if end is not None:
        lines.append(_dt_line("DTEND", end))
    if recurrence_id is not None:
        lines.append(_dt_line("RECURRENCE-ID", recurrence_id))
    if rrule:
        lines.append(f"RRULE:{rrule}")
    if summary is not None:
        lines.append(f"SUMMARY:{summary}")
    if location:
        lines.append(f"LOCATION:{location}")
    if description:
        lines.append(f"DESCRIPTION:{description}")
    if status:
        lines.append(f"STATUS:{status}")
    for email, partstat in attendees:
        lines.append(f"ATTENDEE;CN={email.split('@')[0]};PARTSTAT={partstat}:mailto:{email}")
    lines.append("END:VEVENT")
    return "\r\n".join(lines) + "\r\n"


def build_calendar(*vevents: str) -> str:
    """Wrap VEVENT blocks into a VCALENDAR."""
    body = "".join(vevents)
    return (
        "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//Chronome Test//EN\r\n"
        f"{body}END:VCALENDAR\r\n"
    )


def make_raw(
    uid: str,
    raw: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    anchor: Optional[datetime] = None,
) -> RawOccurrence:
    return RawOccurrence(
        owner_uid=uid,
        recurrence_anchor=anchor,
        declared_start=start,
        declared_end=end,
        raw_encoded_form=raw,
    )


class FixedClock(TimeProvider):
    """TimeProvider returning a settable instant."""

    def __init__(self, now: datetime):
        super().__init__(now.tzinfo)
        self.current = now

    def now(self) -> datetime:
        return self.current


class FakeBackend:
    """In-memory CalendarBackend.

    Clients are the source ids. Expansion results are served per source and
    may be held at a gate to observe in-flight behaviour.
    """

    def __init__(self, sources: list[CalendarSourceRef]):
        self.sources = sources
        self.anomalies: dict[str, list[RawOccurrence]] = defaultdict(list)
        self.expansions: dict[str, list[RawOccurrence]] = defaultdict(list)
        self.connect_failures: set[str] = set()
        self.connect_delays: dict[str, float] = {}
        self.query_failures: set[str] = set()
        self.connect_calls: list[str] = []
        self.anomaly_calls: list[str] = []
        self.expand_calls: list[str] = []
        self.refresh_calls: list[str] = []
        self.expand_gate: Optional[asyncio.Event] = None
        self.expand_entered: Optional[asyncio.Event] = None
        self._queues: dict[str, asyncio.Queue] = {}

    def list_sources(self) -> list[CalendarSourceRef]:
        return list(self.sources)

    async def connect(self, source: CalendarSourceRef) -> str:
        self.connect_calls.append(source.source_id)
        delay = self.connect_delays.get(source.source_id)
        if delay:
            await asyncio.sleep(delay)
        if source.source_id in self.connect_failures:
            raise TransportError("connection refused", source_id=source.source_id)
        return source.source_id

    async def query_anomaly_candidates(self, client: str) -> list[RawOccurrence]:
        self.anomaly_calls.append(client)
        if client in self.query_failures:
            raise TransportError("query failed", source_id=client)
        return list(self.anomalies[client])

    async def expand_recurrences(self, client: str, window_start: datetime, window_end: datetime) -> list[RawOccurrence]:
        self.expand_calls.append(client)
        if self.expand_entered is not None:
            self.expand_entered.set()
        if self.expand_gate is not None:
            await self.expand_gate.wait()
        if client in self.query_failures:
            raise TransportError("query failed", source_id=client)
        return list(self.expansions[client])

    def queue_for(self, client: str) -> asyncio.Queue:
        if client not in self._queues:
            self._queues[client] = asyncio.Queue()
        return self._queues[client]

    async def subscribe_changes(self, client: str) -> AsyncIterator[ChangeNotification]:
        queue = self.queue_for(client)
        while True:
            yield await queue.get()

    async def refresh(self, client: str) -> None:
        self.refresh_calls.append(client)


@pytest.fixture
def local_tz() -> ZoneInfo:
    """Deterministic local timezone for window computations."""
    return NEW_YORK


@pytest.fixture
def at() -> Callable[..., datetime]:
    """Build an aware New York datetime: at(2025, 12, 10, 10, 0)."""

    def builder(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
        return datetime(year, month, day, hour, minute, tzinfo=NEW_YORK)

    return builder


@pytest.fixture
def vevent() -> Callable[..., str]:
    return build_vevent


@pytest.fixture
def calendar_text() -> Callable[..., str]:
    return build_calendar


@pytest.fixture
def raw_occurrence() -> Callable[..., RawOccurrence]:
    return make_raw


@pytest.fixture
def source() -> CalendarSourceRef:
    return CalendarSourceRef(
        source_id="work",
        display_name="Work",
        color_hint="#1E90FF",
        account_identity="me@example.com",
        writable=True,
        calendar_id="me@example.com",
    )


@pytest.fixture
def fixed_clock() -> Callable[[datetime], FixedClock]:
    return FixedClock


@pytest.fixture
def fake_backend() -> Callable[[list[CalendarSourceRef]], FakeBackend]:
    return FakeBackend


@pytest.fixture
def sample_date() -> date:
    return date(2025, 12, 10)


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, Any, None]:
    """Keep env-driven overrides from leaking between tests."""
    for name in ("CHRONOME_TEST_TIME", "CHRONOME_CONFIG", "CHRONOME_DEBUG", "CHRONOME_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield


FAST_CONFIG = Config(debounce_seconds=0.02, connect_timeout_seconds=0.2)


class Harness:
    """Orchestrator wired to a FakeBackend, a fixed clock and a result recorder."""

    def __init__(self, backend: FakeBackend, clock: FixedClock):
        self.backend = backend
        self.clock = clock
        self.results: list[tuple[Optional[EventInstance], list[EventInstance]]] = []
        self.orchestrator: Optional[RefreshOrchestrator] = None

    def record(self, next_meeting: Optional[EventInstance], instances: list[EventInstance]) -> None:
        self.results.append((next_meeting, instances))


@pytest_asyncio.fixture
async def harness_factory(at):
    """Build orchestrator harnesses; every orchestrator is shut down after the test."""
    created: list[RefreshOrchestrator] = []

    def build(
        sources: Optional[list[CalendarSourceRef]] = None,
        config: Optional[Config] = None,
        now: Optional[datetime] = None,
    ) -> Harness:
        sources = sources or [CalendarSourceRef(source_id="work", account_identity="me@example.com")]
        harness = Harness(FakeBackend(sources), FixedClock(now or at(2025, 12, 10, 10)))
        harness.orchestrator = RefreshOrchestrator(
            harness.backend,
            config or FAST_CONFIG,
            on_result_ready=harness.record,
            time_provider=harness.clock,
        )
        created.append(harness.orchestrator)
        return harness

    yield build

    for orchestrator in created:
        await orchestrator.shutdown()


@pytest.fixture
def occurrence() -> Callable[..., RawOccurrence]:
    """Build a plain occurrence whose declared times match its VEVENT."""

    def build(uid: str, start: datetime, end: datetime, title: str = "Meeting", **kwargs: Any) -> RawOccurrence:
        return make_raw(uid, build_vevent(uid, start, end, summary=title, **kwargs), start=start, end=end)

    return build
