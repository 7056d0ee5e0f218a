from __future__ import annotations

"""
Memoization of KPI results outside the pure calculation core.

Keys are SHA-256 digests of a stable JSON payload built from the record set
version, the filter state, the KPI kind and an optional week window, so the
same query always maps to the same entry.
"""

from collections import OrderedDict
from dataclasses import dataclass
import hashlib
import json
import logging
from typing import Any, Callable, Sequence

from .filters import FilterState

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100


def cache_key(
    record_set_version: str | int,
    filters: FilterState | None,
    kpi_key: str,
    window: Sequence[int] | None = None,
) -> str:
    payload = {
        "version": str(record_set_version),
        "filters": None if filters is None else filters.to_dict(),
        "kpi": kpi_key,
        "window": None if window is None else sorted(int(w) for w in window),
    }
    text = json.dumps(payload, sort_keys=True, ensure_ascii=True, default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheStats:
    size: int
    max_entries: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
        }


class KPICache:
    """Least-recently-used store for computed KPI values."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive.")
        self.max_entries = int(max_entries)
        self._entries: OrderedDict[str, Any] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._entries:
            self._entries.move_to_end(key)
            self._hits += 1
            return self._entries[key]
        self._misses += 1
        return default

    def put(self, key: str, value: Any) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("evicted cache entry %s", evicted[:12])

    def get_or_compute(self, key: str, compute: Callable[[], Any]) -> Any:
        if key in self._entries:
            return self.get(key)
        self._misses += 1
        value = compute()
        self.put(key, value)
        return value

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def stats(self) -> CacheStats:
        return CacheStats(
            size=len(self._entries),
            max_entries=self.max_entries,
            hits=self._hits,
            misses=self._misses,
        )
