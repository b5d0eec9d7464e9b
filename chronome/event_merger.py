"""Cross-source deduplication of today's event instances.

Shared calendars visible through several accounts report the same series
occurrence once per source; detached overrides may also be reported both by
the expansion query and by the reschedule index.
"""

import logging
from typing import Optional

from .models import EventInstance, to_epoch_ms

logger = logging.getLogger(__name__)


def dedup_key(instance: EventInstance) -> Optional[str]:
    """Build ``"<series uid>:<epoch ms>"`` from the anchor, else the effective start."""
    reference = instance.recurrence_anchor_start or instance.effective_start
    if reference is None:
        return None
    return f"{instance.series_uid}:{to_epoch_ms(reference)}"


class EventMerger:
    """Collapses duplicate instances while preserving first-seen order."""

    def deduplicate_instances(self, instances: list[EventInstance]) -> list[EventInstance]:
        """Remove duplicate instances sharing a dedup key.

        When two instances share a key, the one carrying a recurrence anchor
        wins; if both or neither carry one, the first seen is kept. The
        survivor takes the position of the first instance seen for its key.

        Args:
            instances: Concatenated instances of all sources

        Returns:
            Deduplicated list of instances
        """
        survivors: dict[str, EventInstance] = {}

        for instance in instances:
            key = dedup_key(instance)
            if key is None:
                continue
            existing = survivors.get(key)
            if existing is None:
                survivors[key] = instance
            elif instance.is_detached_override and not existing.is_detached_override:
                # dict assignment keeps the original insertion position
                survivors[key] = instance

        deduplicated = list(survivors.values())
        if len(deduplicated) != len(instances):
            logger.debug("Removed %d duplicate instances", len(instances) - len(deduplicated))
        return deduplicated


def deduplicate_instances(instances: list[EventInstance]) -> list[EventInstance]:
    """Deduplicate instances (convenience function)."""
    return EventMerger().deduplicate_instances(instances)
