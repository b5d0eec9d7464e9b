"""Protocol that calendar backends must satisfy to feed the pipeline."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from .models import CalendarSourceRef, ChangeNotification, RawOccurrence

# Opaque per-source connection object owned by the backend
ClientHandle = Any


@runtime_checkable
class CalendarBackend(Protocol):
    """Calendar backend contract.

    ``connect`` and the two queries may raise ``TransportError``; the pipeline
    isolates such failures per source. ``expand_recurrences`` must not block
    the event loop.
    """

    def list_sources(self) -> list[CalendarSourceRef]: ...

    async def connect(self, source: CalendarSourceRef) -> ClientHandle: ...

    async def query_anomaly_candidates(self, client: ClientHandle) -> list[RawOccurrence]: ...

    async def expand_recurrences(
        self,
        client: ClientHandle,
        window_start: datetime,
        window_end: datetime,
    ) -> list[RawOccurrence]: ...

    def subscribe_changes(self, client: ClientHandle) -> AsyncIterator[ChangeNotification]: ...

    async def refresh(self, client: ClientHandle) -> None: ...
