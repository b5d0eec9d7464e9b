"""chronome.config_loader

Config loader for chronome.

- Reads YAML (PyYAML) configuration files.
- Exposes a typed dataclass `Config` and a `load_config()` helper that accepts
  an optional path override (else ``CHRONOME_CONFIG``, else ./chronome.yaml).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .constants import (
    CLIENT_CONNECT_TIMEOUT_SECONDS,
    DEBOUNCE_SECONDS,
    DEFAULT_REFRESH_INTERVAL_SECONDS,
    EVENT_TYPE_REGULAR,
    VALID_EVENT_TYPES,
)
from .exceptions import ConfigError
from .models import CalendarSourceRef, SelectionOptions

logger = logging.getLogger(__name__)

CONFIG_ENV = "CHRONOME_CONFIG"
DEFAULT_CONFIG_FILENAME = "chronome.yaml"


@dataclass
class SourceDefinition:
    """One iCalendar feed: an http(s) URL or a local file path."""

    source_id: str
    url: str
    display_name: str = ""
    color: str | None = None
    account: str | None = None
    writable: bool = False
    calendar_id: str | None = None
    enabled: bool = True

    def to_source_ref(self) -> CalendarSourceRef:
        return CalendarSourceRef(
            source_id=self.source_id,
            display_name=self.display_name or self.source_id,
            enabled=self.enabled,
            color_hint=self.color,
            account_identity=self.account,
            writable=self.writable,
            calendar_id=self.calendar_id,
        )

    @classmethod
    def from_raw(cls, raw: Any, index: int) -> SourceDefinition:
        """Accept either a bare URL string or a mapping."""
        if not isinstance(raw, dict):
            return cls(source_id=f"source-{index}", url=str(raw))

        url = raw.get("url") or raw.get("path")
        if not url:
            raise ConfigError(f"Source #{index} has neither `url` nor `path`")
        return cls(
            source_id=str(raw.get("id") or f"source-{index}"),
            url=str(url),
            display_name=str(raw.get("name") or ""),
            color=_optional_str(raw.get("color")),
            account=_optional_str(raw.get("account")),
            writable=bool(raw.get("writable", False)),
            calendar_id=_optional_str(raw.get("calendar_id")),
            enabled=bool(raw.get("enabled", True)),
        )


@dataclass
class Config:
    """Typed configuration for chronome.

    Fields:
        sources: feed definitions for the bundled iCalendar backend
        enabled_calendars: source ids to query; empty means all
        event_types: highlightable event types (regular, tentative, declined)
        show_current_meeting: highlight a meeting in progress
        refresh_interval_seconds: periodic refresh (10..3600)
        debounce_seconds: change notification coalescing window (0.05..10)
        connect_timeout_seconds: per-source connect bound (1..120)
        change_poll_seconds: how often feeds are polled for changes (5..3600)
        timezone: IANA name of the local timezone; None for the host's
        log_level: logging level name
    """

    sources: list[SourceDefinition] = field(default_factory=list)
    enabled_calendars: list[str] = field(default_factory=list)
    event_types: list[str] = field(default_factory=lambda: [EVENT_TYPE_REGULAR])
    show_current_meeting: bool = True
    refresh_interval_seconds: int = DEFAULT_REFRESH_INTERVAL_SECONDS
    debounce_seconds: float = DEBOUNCE_SECONDS
    connect_timeout_seconds: float = CLIENT_CONNECT_TIMEOUT_SECONDS
    change_poll_seconds: int = 60
    timezone: str | None = None
    log_level: str = "INFO"

    def selection_options(self) -> SelectionOptions:
        return SelectionOptions(
            event_types=tuple(self.event_types),
            show_current_meeting=self.show_current_meeting,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Config:
        """Create Config from a plain mapping, applying defaults and validation.

        Numeric values are coerced and clamped to their bounds with a warning;
        unknown event types are dropped.

        Raises:
            ConfigError: A source definition is unusable
        """
        if data is None:
            data = {}

        sources_raw = data.get("sources") or []
        if not isinstance(sources_raw, (list, tuple)):
            logger.warning("Config `sources` is not a list; coercing to single-item list")
            sources_raw = [sources_raw]
        sources = [SourceDefinition.from_raw(raw, i) for i, raw in enumerate(sources_raw)]

        enabled_raw = data.get("enabled_calendars") or []
        if not isinstance(enabled_raw, (list, tuple)):
            enabled_raw = [enabled_raw]
        enabled_calendars = [str(s) for s in enabled_raw]

        types_raw = data.get("event_types")
        if types_raw is None:
            types_raw = [EVENT_TYPE_REGULAR]
        elif not isinstance(types_raw, (list, tuple)):
            types_raw = [types_raw]
        event_types = []
        for value in types_raw:
            name = str(value).lower()
            if name in VALID_EVENT_TYPES:
                if name not in event_types:
                    event_types.append(name)
            else:
                logger.warning("Ignoring unknown event type %r", value)

        def _coerce_number(key: str, default: float, low: float, high: float, scale: float = 1.0) -> float:
            raw = data.get(key)
            if raw is None:
                return default
            try:
                value = float(raw) * scale
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not a number; using default %s", key, raw, default)
                return default
            if value < low:
                logger.warning("%s %s below minimum; coercing to %s", key, raw, low / scale)
                return low
            if value > high:
                logger.warning("%s %s above maximum; coercing to %s", key, raw, high / scale)
                return high
            return value

        refresh = int(_coerce_number("refresh_interval_seconds", DEFAULT_REFRESH_INTERVAL_SECONDS, 10, 3600))
        debounce = _coerce_number("debounce_ms", DEBOUNCE_SECONDS, 0.05, 10.0, scale=0.001)
        connect_timeout = _coerce_number("connect_timeout_seconds", CLIENT_CONNECT_TIMEOUT_SECONDS, 1.0, 120.0)
        change_poll = int(_coerce_number("change_poll_seconds", 60, 5, 3600))

        log_level = data.get("log_level", "INFO")
        log_level = str(log_level).upper() if log_level is not None else "INFO"

        return cls(
            sources=sources,
            enabled_calendars=enabled_calendars,
            event_types=event_types,
            show_current_meeting=bool(data.get("show_current_meeting", True)),
            refresh_interval_seconds=refresh,
            debounce_seconds=debounce,
            connect_timeout_seconds=connect_timeout,
            change_poll_seconds=change_poll,
            timezone=_optional_str(data.get("timezone")),
            log_level=log_level,
        )


def _optional_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def _load_yaml(path: Path) -> Any:
    try:
        loaded = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigError(f"Unable to parse config {path}: {exc}") from exc
    # safe_load returns None for empty files
    return {} if loaded is None else loaded


def load_config(path: str | None = None) -> Config:
    """Load configuration from a YAML file and return a Config instance.

    Args:
        path: Optional path to the config file. Defaults to ``$CHRONOME_CONFIG``
              or ./chronome.yaml.

    Returns:
        Config dataclass instance with values from file (or defaults).

    Raises:
        ConfigError: The file is not valid YAML or its top level is not a mapping
    """
    path = path or os.environ.get(CONFIG_ENV)
    p = Path(path) if path else Path.cwd() / DEFAULT_CONFIG_FILENAME
    logger.debug("Attempting to load config from %s", p)
    if not p.exists():
        logger.info("Config file %s not found; using defaults", p)
        return Config()

    raw = _load_yaml(p)
    if not isinstance(raw, dict):
        logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, raw)
        raise ConfigError("Config file must contain a mapping at top level")
    cfg = Config.from_dict(raw)
    logger.info("Loaded configuration from %s", p)
    logger.debug("Configuration values: %s", cfg)
    return cfg
