"""Exception hierarchy for the chronome event resolution pipeline.

Each exception type maps to one failure scope so that callers can isolate
failures at the boundary that owns them: a single source, a single occurrence,
or a whole refresh run.
"""


class ChronomeError(Exception):
    """Base exception for all chronome errors."""


class TransportError(ChronomeError):
    """Talking to a single calendar source failed.

    Raised when:
    - Connecting to a source fails or exceeds the connect timeout
    - A backend query (anomaly candidates, recurrence expansion) fails
    - A feed cannot be fetched or decoded

    The source's contribution to the current refresh becomes empty; other
    sources are unaffected.
    """

    def __init__(self, message: str, source_id: str | None = None):
        super().__init__(message)
        self.source_id = source_id


class ParseError(ChronomeError):
    """A raw occurrence carries a malformed iCalendar encoding.

    The offending occurrence is skipped; the rest of the source is processed.
    """


class PipelineError(ChronomeError):
    """Merging, classifying or selecting failed unexpectedly.

    Surfaces to the UI collaborator as an empty "unavailable" result. The
    orchestrator stays usable for the next trigger.
    """


class ConfigError(ChronomeError):
    """Configuration file could not be loaded or is structurally invalid."""
