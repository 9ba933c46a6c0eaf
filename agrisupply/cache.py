"""Process-wide insert-only caches for dataset text and geodata responses."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Generic, Iterable, Optional, Tuple, TypeVar

from .geo import BoundingBox

V = TypeVar("V")


class InsertOnlyCache(Generic[V]):
    """Map whose entries are added once and never replaced or removed.

    Concurrent writers racing on a key resolve to the first inserted value.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._entries: Dict[str, V] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[V]:
        return self._entries.get(key)

    def add(self, key: str, value: V) -> V:
        with self._lock:
            return self._entries.setdefault(key, value)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def parcel_cache_key(
    tags: Iterable[str],
    bbox: BoundingBox,
    radius_km: float,
    point_count: int,
    precision: int = 4,
) -> str:
    """Key for a land-use query: tag set, rounded window, radius and circle count."""

    tag_part = "|".join(sorted(set(tags)))
    return f"landuse|{tag_part}|{bbox.rounded(precision)}|r:{float(radius_km):.2f}|n:{point_count}"


@dataclass(slots=True)
class PipelineCaches:
    datasets: InsertOnlyCache[str] = field(default_factory=lambda: InsertOnlyCache("datasets"))
    parcels: InsertOnlyCache[Tuple[dict, ...]] = field(default_factory=lambda: InsertOnlyCache("parcels"))


@lru_cache(maxsize=1)
def get_caches() -> PipelineCaches:
    """Return the process-wide cache bundle."""

    return PipelineCaches()
