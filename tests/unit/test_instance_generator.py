"""Unit tests for today's instance generation."""

import datetime

import pytest

from chronome.exceptions import TransportError
from chronome.instance_generator import generate_today_instances, resolve_occurrences
from chronome.models import RescheduleCacheEntry
from chronome.reschedule_index import classify_anomalies
from chronome.timezone_utils import today_window

pytestmark = pytest.mark.unit


class TestResolveOccurrences:
    def test_plain_occurrences_use_declared_times(self, at, vevent, raw_occurrence, source, local_tz):
        master = vevent("S", at(2025, 12, 3, 10), at(2025, 12, 3, 11), rrule="FREQ=WEEKLY", summary="Weekly")
        occurrence = raw_occurrence("S", master, start=at(2025, 12, 10, 10), end=at(2025, 12, 10, 11))
        window = today_window(at(2025, 12, 10, 8))

        instances = resolve_occurrences([occurrence], source, window, local_tz, RescheduleCacheEntry.empty(window.date_key))

        assert len(instances) == 1
        assert instances[0].effective_start == at(2025, 12, 10, 10)
        assert instances[0].effective_end == at(2025, 12, 10, 11)
        assert instances[0].title == "Weekly"
        assert instances[0].recurrence_anchor_start is None

    def test_plain_occurrence_without_declared_start_uses_raw(self, at, vevent, raw_occurrence, source, local_tz):
        single = vevent("X", at(2025, 12, 10, 13), at(2025, 12, 10, 13, 30))
        window = today_window(at(2025, 12, 10, 8))
        instances = resolve_occurrences(
            [raw_occurrence("X", single)], source, window, local_tz, RescheduleCacheEntry.empty(window.date_key)
        )
        assert [i.effective_start for i in instances] == [at(2025, 12, 10, 13)]
        assert instances[0].effective_end == at(2025, 12, 10, 13, 30)

    def test_anchored_occurrence_uses_rederived_times(self, at, vevent, raw_occurrence, source, local_tz):
        override = vevent(
            "S", at(2025, 12, 10, 15), at(2025, 12, 10, 15, 45), recurrence_id=at(2025, 12, 10, 10), summary="Later"
        )
        # Backend reports the anchor's time
        occurrence = raw_occurrence(
            "S", override, start=at(2025, 12, 10, 10), end=at(2025, 12, 10, 11), anchor=at(2025, 12, 10, 10)
        )
        window = today_window(at(2025, 12, 10, 8))

        instances = resolve_occurrences([occurrence], source, window, local_tz, RescheduleCacheEntry.empty(window.date_key))

        assert len(instances) == 1
        assert instances[0].effective_start == at(2025, 12, 10, 15)
        assert instances[0].effective_end == at(2025, 12, 10, 15, 45)
        assert instances[0].recurrence_anchor_start == at(2025, 12, 10, 10)

    def test_anchored_occurrence_without_dtend_keeps_declared_duration(self, at, vevent, raw_occurrence, source, local_tz):
        override = vevent("S", at(2025, 12, 10, 15), recurrence_id=at(2025, 12, 10, 10))
        occurrence = raw_occurrence(
            "S", override, start=at(2025, 12, 10, 10), end=at(2025, 12, 10, 10, 30), anchor=at(2025, 12, 10, 10)
        )
        window = today_window(at(2025, 12, 10, 8))
        instances = resolve_occurrences([occurrence], source, window, local_tz, RescheduleCacheEntry.empty(window.date_key))
        assert instances[0].effective_end == at(2025, 12, 10, 15, 30)

    def test_moved_away_occurrence_is_suppressed(self, at, vevent, raw_occurrence, source, local_tz):
        override = vevent("S", at(2025, 12, 17, 14), at(2025, 12, 17, 15), recurrence_id=at(2025, 12, 10, 10))
        occurrence = raw_occurrence(
            "S", override, start=at(2025, 12, 10, 10), end=at(2025, 12, 10, 11), anchor=at(2025, 12, 10, 10)
        )
        window = today_window(at(2025, 12, 10, 8))
        entry = classify_anomalies([occurrence], source, window, local_tz)

        assert resolve_occurrences([occurrence], source, window, local_tz, entry) == []

    def test_moved_into_today_is_injected(self, at, vevent, raw_occurrence, source, local_tz):
        override = vevent(
            "S", at(2025, 12, 17, 14), at(2025, 12, 17, 15), recurrence_id=at(2025, 12, 10, 10), summary="Moved"
        )
        master = vevent("S", at(2025, 12, 3, 10), at(2025, 12, 3, 11), rrule="FREQ=WEEKLY", summary="Weekly")
        window = today_window(at(2025, 12, 17, 8))
        entry = classify_anomalies(
            [raw_occurrence("S", override, anchor=at(2025, 12, 10, 10)), raw_occurrence("S", master)],
            source,
            window,
            local_tz,
        )
        expanded = [raw_occurrence("S", master, start=at(2025, 12, 17, 10), end=at(2025, 12, 17, 11))]

        instances = resolve_occurrences(expanded, source, window, local_tz, entry)

        assert [(i.title, i.effective_start) for i in instances] == [
            ("Weekly", at(2025, 12, 17, 10)),
            ("Moved", at(2025, 12, 17, 14)),
        ]

    def test_window_overlap_filter(self, at, vevent, raw_occurrence, source, local_tz):
        window = today_window(at(2025, 12, 10, 8))
        yesterday = vevent("Y", at(2025, 12, 9, 22), at(2025, 12, 10, 0))
        overnight = vevent("O", at(2025, 12, 9, 23), at(2025, 12, 10, 1))
        occurrences = [
            raw_occurrence("Y", yesterday, start=at(2025, 12, 9, 22), end=at(2025, 12, 10, 0)),
            raw_occurrence("O", overnight, start=at(2025, 12, 9, 23), end=at(2025, 12, 10, 1)),
        ]
        instances = resolve_occurrences(occurrences, source, window, local_tz, RescheduleCacheEntry.empty(window.date_key))
        assert [i.series_uid for i in instances] == ["O"]

    def test_malformed_occurrence_is_skipped(self, at, vevent, raw_occurrence, source, local_tz):
        window = today_window(at(2025, 12, 10, 8))
        bad = raw_occurrence("B", "BEGIN:VEVENT\nRECURRENCE-ID:bogus\nEND:VEVENT\n", anchor=at(2025, 12, 10, 9))
        good = raw_occurrence("G", vevent("G", at(2025, 12, 10, 9)), start=at(2025, 12, 10, 9))
        instances = resolve_occurrences([bad, good], source, window, local_tz, RescheduleCacheEntry.empty(window.date_key))
        assert [i.series_uid for i in instances] == ["G"]

    def test_occurrence_without_uid_is_skipped(self, at, vevent, raw_occurrence, source, local_tz):
        window = today_window(at(2025, 12, 10, 8))
        nameless = raw_occurrence("", vevent("", at(2025, 12, 10, 9)), start=at(2025, 12, 10, 9))
        assert resolve_occurrences([nameless], source, window, local_tz, RescheduleCacheEntry.empty(window.date_key)) == []

    def test_declared_times_are_converted_to_local(self, at, vevent, raw_occurrence, source, local_tz):
        window = today_window(at(2025, 12, 10, 8))
        utc_start = datetime.datetime(2025, 12, 10, 15, 0, tzinfo=datetime.timezone.utc)
        occurrence = raw_occurrence("U", vevent("U", utc_start), start=utc_start, end=utc_start + datetime.timedelta(hours=1))
        instances = resolve_occurrences([occurrence], source, window, local_tz, RescheduleCacheEntry.empty(window.date_key))
        assert instances[0].effective_start.tzinfo is local_tz
        assert instances[0].effective_start.hour == 10


class DummyExpansionBackend:
    def __init__(self, result=None, error=None):
        self.result = result or []
        self.error = error
        self.windows = []

    async def expand_recurrences(self, client, window_start, window_end):
        self.windows.append((window_start, window_end))
        if self.error:
            raise self.error
        return self.result


class TestGenerateTodayInstances:
    @pytest.mark.asyncio
    async def test_queries_today_window(self, at, vevent, raw_occurrence, source, local_tz):
        occurrence = raw_occurrence("G", vevent("G", at(2025, 12, 10, 9)), start=at(2025, 12, 10, 9))
        backend = DummyExpansionBackend([occurrence])
        window = today_window(at(2025, 12, 10, 8))

        instances = await generate_today_instances(
            backend, "client", source, window, local_tz, RescheduleCacheEntry.empty(window.date_key)
        )

        assert [i.series_uid for i in instances] == ["G"]
        assert backend.windows == [(window.start, window.end)]

    @pytest.mark.asyncio
    async def test_transport_error_yields_no_instances(self, at, source, local_tz):
        backend = DummyExpansionBackend(error=TransportError("down"))
        window = today_window(at(2025, 12, 10, 8))
        instances = await generate_today_instances(
            backend, "client", source, window, local_tz, RescheduleCacheEntry.empty(window.date_key)
        )
        assert instances == []
