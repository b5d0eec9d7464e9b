"""Full service runs over an iCalendar file feed."""

import io
import json
import logging
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from chronome.__main__ import _create_parser, main
from chronome.backends import IcsFeedBackend
from chronome.config_loader import Config, SourceDefinition
from chronome.refresh_orchestrator import RefreshOrchestrator
from chronome.service import serve
from chronome.timezone_utils import TEST_TIME_ENV

pytestmark = pytest.mark.integration

NY = ZoneInfo("America/New_York")


def _dt(day: int, hour: int = 0) -> datetime:
    return datetime(2025, 12, day, hour, tzinfo=NY)


@pytest.fixture
def feed_path(tmp_path, vevent, calendar_text):
    master = vevent("weekly", _dt(3, 10), _dt(3, 11), summary="Team Sync", rrule="FREQ=WEEKLY;COUNT=10")
    override = vevent(
        "weekly",
        _dt(17, 14),
        _dt(17, 15),
        summary="Team Sync (moved)",
        location="https://meet.google.com/abc-defg-hij",
        recurrence_id=_dt(10, 10),
    )
    lunch = vevent("lunch", _dt(10, 12), _dt(10, 13), summary="Lunch")
    path = tmp_path / "work.ics"
    path.write_text(calendar_text(master, override, lunch))
    return path


@pytest.fixture
def restore_root_level():
    """Keep CLI runs from changing logging for later tests."""
    names = ["", "chronome", "httpx", "httpcore", "asyncio", "icalendar"]
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


def _config(feed_path) -> Config:
    return Config(
        sources=[SourceDefinition(source_id="work", url=str(feed_path), color="#336699")],
        timezone="America/New_York",
    )


class TestServeOnce:
    @pytest.mark.asyncio
    async def test_anchor_day_hides_moved_occurrence(self, feed_path, monkeypatch):
        monkeypatch.setenv(TEST_TIME_ENV, "2025-12-10T08:00:00-05:00")
        out = io.StringIO()

        assert await serve(_config(feed_path), once=True, stream=out) == 0

        lines = out.getvalue().splitlines()
        assert len(lines) == 1
        payload = json.loads(lines[0])
        assert [e["title"] for e in payload["events"]] == ["Lunch"]
        assert payload["nextMeeting"]["title"] == "Lunch"
        assert payload["events"][0]["calendarColor"] == "#336699"

    @pytest.mark.asyncio
    async def test_true_day_shows_moved_occurrence(self, feed_path, monkeypatch):
        monkeypatch.setenv(TEST_TIME_ENV, "2025-12-17T11:00:00-05:00")
        out = io.StringIO()

        await serve(_config(feed_path), once=True, stream=out)

        payload = json.loads(out.getvalue())
        assert [e["title"] for e in payload["events"]] == ["Team Sync", "Team Sync (moved)"]
        assert payload["nextMeeting"] == {
            "startMs": int(_dt(17, 14).timestamp() * 1000),
            "endMs": int(_dt(17, 15).timestamp() * 1000),
            "title": "Team Sync (moved)",
            "hasVideoLink": True,
        }

    @pytest.mark.asyncio
    async def test_unreadable_feed_publishes_empty_result(self, tmp_path, monkeypatch):
        monkeypatch.setenv(TEST_TIME_ENV, "2025-12-10T08:00:00-05:00")
        config = Config(sources=[SourceDefinition(source_id="gone", url=str(tmp_path / "gone.ics"))])
        out = io.StringIO()

        await serve(config, once=True, stream=out)

        assert json.loads(out.getvalue()) == {"nextMeeting": None, "events": []}


class TestCommandLine:
    def test_parser(self):
        args = _create_parser().parse_args(["--config", "cal.yaml", "--once", "--log-level", "debug"])
        assert args.config == "cal.yaml"
        assert args.once is True
        assert args.log_level == "DEBUG"

    def test_parser_defaults(self):
        args = _create_parser().parse_args([])
        assert args.config is None
        assert args.once is False
        assert args.log_level is None

    @pytest.mark.usefixtures("restore_root_level")
    def test_main_once(self, tmp_path, feed_path, monkeypatch, capsys):
        monkeypatch.setenv(TEST_TIME_ENV, "2025-12-10T08:00:00-05:00")
        config_file = tmp_path / "chronome.yaml"
        config_file.write_text(f"timezone: America/New_York\nsources:\n  - id: work\n    path: {feed_path}\n")

        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(config_file), "--once", "--log-level", "warning"])

        assert exc_info.value.code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["nextMeeting"]["title"] == "Lunch"

    @pytest.mark.usefixtures("restore_root_level")
    def test_main_invalid_config(self, tmp_path):
        config_file = tmp_path / "broken.yaml"
        config_file.write_text("sources: [unclosed\n")

        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(config_file)])

        assert exc_info.value.code == 2


class TestManualRefresh:
    @pytest.mark.asyncio
    async def test_manual_refresh_picks_up_moved_in_occurrence(self, tmp_path, vevent, calendar_text, fixed_clock):
        master = vevent("weekly", _dt(3, 10), _dt(3, 11), summary="Team Sync", rrule="FREQ=WEEKLY;COUNT=10")
        path = tmp_path / "work.ics"
        path.write_text(calendar_text(master))
        config = _config(path)
        results = []
        orchestrator = RefreshOrchestrator(
            IcsFeedBackend.from_config(config),
            config,
            on_result_ready=lambda next_meeting, instances: results.append(instances),
            time_provider=fixed_clock(_dt(17, 8)),
        )
        try:
            await orchestrator.refresh()
            assert [i.title for i in results[-1]] == ["Team Sync"]

            # The Dec 10 occurrence is moved onto today
            override = vevent(
                "weekly",
                _dt(17, 14),
                _dt(17, 15),
                summary="Team Sync (moved)",
                recurrence_id=_dt(10, 10),
            )
            path.write_text(calendar_text(master, override))

            await orchestrator.manual_refresh()
            await orchestrator.refresh()
        finally:
            await orchestrator.shutdown()

        assert [(i.title, i.effective_start) for i in results[-1]] == [
            ("Team Sync", _dt(17, 10)),
            ("Team Sync (moved)", _dt(17, 14)),
        ]
