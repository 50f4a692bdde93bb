"""
In-memory request cache for Jira API interactions.

Keeps upstream responses for a fixed TTL so repeated lookups (projects,
boards, sprints, sprint issues) during one review session hit Jira once.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

DEFAULT_TTL_SECONDS = 5 * 60

logger = logging.getLogger(__name__)


@dataclass
class CachedEntry:
    """A cached upstream response and the clock reading when it was stored."""

    data: Any
    timestamp: float


def derive_cache_key(operation: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Return a canonical cache key for an operation and its parameters.

    Parameters are serialised with sorted keys, so two logically identical
    calls map to the same key regardless of the order the caller built them in.

    Args:
        operation: Operation name (e.g., "fetch_sprints")
        params: Optional JSON-serialisable parameters

    Returns:
        Key of the form "<operation>:<canonical json>"

    Examples:
        >>> derive_cache_key("fetch_sprints", {"boardId": 7, "startAt": 0})
        'fetch_sprints:{"boardId":7,"startAt":0}'
        >>> derive_cache_key("fetch_sprints", {"startAt": 0, "boardId": 7})
        'fetch_sprints:{"boardId":7,"startAt":0}'
        >>> derive_cache_key("fetch_projects")
        'fetch_projects:'
    """
    if not params:
        return f"{operation}:"
    param_string = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return f"{operation}:{param_string}"


class RequestCache:
    """TTL cache keyed by derive_cache_key() strings.

    An entry is valid while ``clock() - entry.timestamp < ttl_seconds``.
    Expired entries are evicted lazily on the next read. The cache holds no
    lock: concurrent writers of the same key simply overwrite each other.

    Args:
        ttl_seconds: Entry lifetime (default: 300)
        clock: Zero-argument callable returning seconds; injectable for tests

    Examples:
        >>> cache = RequestCache(ttl_seconds=60)
        >>> cache.set("fetch_projects:", [{"key": "PROJ"}])
        >>> cache.get("fetch_projects:")
        [{'key': 'PROJ'}]
        >>> cache.get("fetch_boards:")
        None
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CachedEntry] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[Any]:
        """Return cached data for ``key``, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() - entry.timestamp >= self.ttl_seconds:
            del self._entries[key]
            self.misses += 1
            logger.debug("Cache entry expired: %s", key)
            return None
        self.hits += 1
        return entry.data

    def set(self, key: str, data: Any) -> None:
        self._entries[key] = CachedEntry(data=data, timestamp=self._clock())

    def get_or_fetch(self, key: str, fetch: Callable[[], Any]) -> Any:
        """Return cached data for ``key`` or call ``fetch()`` and store its result.

        Exceptions raised by ``fetch`` propagate and nothing is stored.
        """
        cached = self.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached
        data = fetch()
        self.set(key, data)
        return data

    def clear(self, pattern: Optional[str] = None) -> int:
        """Remove entries whose key contains ``pattern``, or all entries.

        Returns:
            Number of entries removed
        """
        if not pattern:
            removed = len(self._entries)
            self._entries.clear()
        else:
            doomed = [key for key in self._entries if pattern in key]
            for key in doomed:
                del self._entries[key]
            removed = len(doomed)
        logger.info("Cleared %d cache entries%s", removed, f" matching '{pattern}'" if pattern else "")
        return removed

    def stats(self) -> Dict[str, Any]:
        """Return cache introspection data.

        Returns:
            dict with keys:
                - 'size': number of stored entries (expired ones included until read)
                - 'entries': sorted list of keys
                - 'hits' / 'misses': lookup counters since creation
        """
        entries: List[str] = sorted(self._entries)
        return {
            "size": len(entries),
            "entries": entries,
            "hits": self.hits,
            "misses": self.misses,
        }
