"""Overpass API client with endpoint rotation, backoff and response caching."""
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from .cache import InsertOnlyCache
from .cancellation import CancellationToken, OperationCancelled
from .catalog import LANDUSE_TAGS, OVERPASS_ENDPOINTS
from .config import Settings
from .geo import POLYGON_TYPES, BoundingBox, simplify_geometry
from .model import LandParcel
from .osm import overpass_to_features

logger = logging.getLogger(__name__)


class OverpassError(RuntimeError):
    """Raised when an Overpass endpoint returns an unusable response."""


class GeodataFetchError(OverpassError):
    """Raised once every retry attempt against every endpoint has failed."""


def validate_tags(tags: Iterable[str]) -> List[str]:
    """Return the enabled land-use tags in canonical order; reject unknown ones."""

    wanted = {str(tag).strip() for tag in tags if str(tag).strip()}
    unknown = sorted(wanted.difference(LANDUSE_TAGS))
    if unknown:
        raise ValueError(f"Unsupported land-use tag(s): {', '.join(unknown)}")
    return [tag for tag in LANDUSE_TAGS if tag in wanted]


def build_query(bbox: BoundingBox, tags: Iterable[str], timeout: int = 90) -> str:
    pattern = "|".join(validate_tags(tags))
    return (
        f"[out:json][timeout:{timeout}];\n"
        "(\n"
        f'  nwr["landuse"~"^({pattern})$"]({bbox.overpass_clause()});\n'
        ");\n"
        "out geom;\n"
    )


@dataclass(slots=True)
class OverpassClient:
    """Overpass QL client that rotates endpoints between retries."""

    endpoints: Sequence[str] = field(default_factory=lambda: list(OVERPASS_ENDPOINTS))
    timeout: float = 120.0
    query_timeout: int = 90
    max_attempts: int = 4
    backoff_base: float = 1.5
    backoff_cap: float = 9.0
    jitter: float = 0.4
    simplify_tolerance: float = 0.0
    cache: Optional[InsertOnlyCache[Tuple[dict, ...]]] = None
    session: Optional[requests.Session] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.endpoints:
            raise ValueError("At least one Overpass endpoint is required.")
        if self.session is None:
            self.session = requests.Session()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: Optional[InsertOnlyCache[Tuple[dict, ...]]] = None,
        session: Optional[requests.Session] = None,
    ) -> "OverpassClient":
        return cls(
            endpoints=list(settings.overpass_endpoints),
            timeout=settings.overpass_http_timeout_s,
            query_timeout=settings.overpass_query_timeout_s,
            max_attempts=settings.overpass_max_attempts,
            backoff_base=settings.overpass_backoff_base_s,
            backoff_cap=settings.overpass_backoff_cap_s,
            jitter=settings.overpass_jitter_s,
            simplify_tolerance=settings.simplify_tolerance_deg,
            cache=cache,
            session=session,
        )

    def fetch_parcels(
        self,
        bbox: BoundingBox,
        landuse_tags: Iterable[str],
        cache_key: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[LandParcel]:
        """Fetch land-use (multi)polygons inside ``bbox`` for the enabled tags."""

        enabled = validate_tags(landuse_tags)
        if not enabled:
            return []

        query = build_query(bbox, enabled, self.query_timeout)
        logger.debug("Querying land use %s in %s", enabled, bbox.overpass_clause())
        features = self.fetch_features(query, cache_key=cache_key, token=token)

        wanted = set(enabled)
        parcels: List[LandParcel] = []
        for feature in features:
            properties = feature.get("properties") or {}
            landuse = properties.get("landuse") or (properties.get("tags") or {}).get("landuse")
            if landuse not in wanted:
                continue
            geometry = feature.get("geometry")
            if not geometry or geometry.get("type") not in POLYGON_TYPES:
                continue
            if self.simplify_tolerance > 0:
                geometry = simplify_geometry(geometry, self.simplify_tolerance) or geometry
            parcels.append(
                LandParcel(
                    osm_id=str(feature.get("id") or properties.get("osm_id")),
                    landuse=landuse,
                    geometry=geometry,
                )
            )
        return parcels

    def fetch_features(
        self,
        query: str,
        cache_key: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> Tuple[dict, ...]:
        """Run ``query`` and return GeoJSON features, served from cache when possible."""

        if cache_key and self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Overpass cache hit for %s", cache_key)
                return cached

        payload = self._request(query, token)
        features = tuple(overpass_to_features(payload))

        # A response for a superseded request is dropped, not cached.
        if token is not None:
            token.raise_if_cancelled()
        if cache_key and self.cache is not None:
            features = self.cache.add(cache_key, features)
        return features

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _request(self, query: str, token: Optional[CancellationToken]) -> Dict[str, Any]:
        """POST the query, rotating endpoints and backing off between failures."""

        last_error: Optional[Exception] = None
        for attempt in range(self.max_attempts):
            if token is not None:
                token.raise_if_cancelled()

            endpoint = self.endpoints[attempt % len(self.endpoints)]
            try:
                response = self.session.post(endpoint, data={"data": query}, timeout=self.timeout)
                if not 200 <= response.status_code < 300:
                    raise OverpassError(f"Overpass HTTP {response.status_code} from {endpoint}")
                data = response.json()
                if not isinstance(data, dict):
                    raise OverpassError(f"Unexpected Overpass payload from {endpoint}")
                remark = data.get("remark")
                if remark and "error" in str(remark).lower():
                    raise OverpassError(f"Overpass remark from {endpoint}: {remark}")
                return data
            except (requests.RequestException, ValueError, OverpassError) as exc:
                last_error = exc
                logger.warning(
                    "Overpass attempt %d/%d via %s failed: %s", attempt + 1, self.max_attempts, endpoint, exc
                )

            if attempt + 1 >= self.max_attempts:
                break
            self._sleep(attempt, token)

        logger.error("Overpass failed after %d attempts", self.max_attempts)
        raise GeodataFetchError(f"Overpass failed after {self.max_attempts} attempts: {last_error}") from last_error

    def _sleep(self, attempt: int, token: Optional[CancellationToken]) -> None:
        delay = min(self.backoff_base * (2 ** attempt), self.backoff_cap) + random.uniform(0, self.jitter)
        if token is not None:
            if token.wait(delay):
                raise OperationCancelled()
        elif delay > 0:
            time.sleep(delay)
