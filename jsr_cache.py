"""
Result cache for finished exports.

Re-exporting an unchanged review (same deck, issues, metrics, options and
day) returns the stored ExportResult instead of rendering again. Entries
expire after a day and the cache is bounded both by entry count and by the
total size of the stored files; the least recently used entries go first.
"""

import hashlib
import logging
import time
from collections import OrderedDict
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from jira_cache import CachedEntry, RequestCache, derive_cache_key
from jsr_models import ExportOptions, ExportResult

logger = logging.getLogger(__name__)

EXPORT_TTL_SECONDS = 24 * 60 * 60
MAX_ENTRIES = 50
MAX_TOTAL_BYTES = 100 * 1024 * 1024


def _plain(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Mapping):
        return dict(value)
    return value


def export_cache_key(
    presentation: Any,
    issues: Optional[Iterable[Any]],
    upcoming_issues: Optional[Iterable[Any]],
    metrics: Any,
    options: ExportOptions,
    day: Union[date, datetime],
) -> str:
    """Return the cache key for one export request.

    The key is ``export:<format>:<sha256>`` over the canonical JSON of every
    input that shows up in the output. ``useCache`` itself is left out, so a
    bypassing call still refreshes the entry normal calls read. The day is
    part of the key because it is part of the generated file name.

    Args:
        presentation: GeneratedPresentation or its JSON mapping
        issues: Sprint issues (Issue instances or mappings)
        upcoming_issues: Upcoming issues (Issue instances or mappings)
        metrics: SprintMetrics, its mapping, or None
        options: Resolved export options
        day: Export date

    Returns:
        Key string; the format prefix lets clear() drop one format at a time
    """
    settings = options.to_dict()
    settings.pop("useCache", None)
    if isinstance(day, datetime):
        day = day.date()
    canonical = derive_cache_key("export", {
        "presentation": _plain(presentation),
        "issues": [_plain(issue) for issue in issues or []],
        "upcomingIssues": [_plain(issue) for issue in upcoming_issues or []],
        "metrics": _plain(metrics),
        "options": settings,
        "date": day.isoformat(),
    })
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"export:{options.format}:{digest}"


class ExportCache(RequestCache):
    """LRU cache of ExportResult objects with a byte limit.

    Args:
        ttl_seconds: Entry lifetime (default: one day)
        max_entries: Most results kept at once
        max_bytes: Most blob bytes kept at once; a single larger result is
            never stored
        clock: Zero-argument callable returning seconds; injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = EXPORT_TTL_SECONDS,
        max_entries: int = MAX_ENTRIES,
        max_bytes: int = MAX_TOTAL_BYTES,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        if max_entries <= 0 or max_bytes <= 0:
            raise ValueError("max_entries and max_bytes must be positive")
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self._entries: "OrderedDict[str, CachedEntry]" = OrderedDict()

    @property
    def total_bytes(self) -> int:
        return sum(entry.data.file_size for entry in self._entries.values())

    def get(self, key: str) -> Optional[ExportResult]:
        result = super().get(key)
        if result is not None:
            self._entries.move_to_end(key)
            logger.debug("Export cache hit: %s", key)
        return result

    def set(self, key: str, data: ExportResult) -> None:
        if data.file_size > self.max_bytes:
            logger.info("Not caching %s: %d bytes exceeds the %d byte limit",
                        data.file_name, data.file_size, self.max_bytes)
            return
        self._entries.pop(key, None)
        super().set(key, data)
        self._evict()

    def _evict(self) -> None:
        while len(self._entries) > self.max_entries or self.total_bytes > self.max_bytes:
            key, _ = self._entries.popitem(last=False)
            logger.debug("Evicted export cache entry %s", key)

    def stats(self) -> Dict[str, Any]:
        stats = super().stats()
        lookups = self.hits + self.misses
        stats.update({
            "totalBytes": self.total_bytes,
            "maxEntries": self.max_entries,
            "maxBytes": self.max_bytes,
            "hitRate": round(self.hits / lookups * 100, 1) if lookups else 0.0,
        })
        return stats
