"""Geospatial helper utilities."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from pyproj import Geod
from shapely.errors import GEOSException
from shapely.geometry import shape

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088
POLYGON_TYPES = frozenset({"Polygon", "MultiPolygon"})

_GEOD = Geod(ellps="WGS84")


@dataclass(slots=True, frozen=True)
class BoundingBox:
    """Axis-aligned WGS84 box in degrees."""

    south: float
    west: float
    north: float
    east: float

    def overpass_clause(self) -> str:
        return f"{self.south},{self.west},{self.north},{self.east}"

    def rounded(self, precision: int = 4) -> str:
        return ",".join(f"{value:.{precision}f}" for value in (self.south, self.west, self.north, self.east))

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east

    def union(self, other: "BoundingBox") -> "BoundingBox":
        return BoundingBox(
            south=min(self.south, other.south),
            west=min(self.west, other.west),
            north=max(self.north, other.north),
            east=max(self.east, other.east),
        )


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the great-circle distance between two WGS84 points in kilometers."""

    lat1_rad, lon1_rad, lat2_rad, lon2_rad = map(math.radians, (lat1, lon1, lat2, lon2))
    d_lat = lat2_rad - lat1_rad
    d_lon = lon2_rad - lon1_rad

    a = math.sin(d_lat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(d_lon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def geometry_centroid(geometry: Optional[dict]) -> Optional[Tuple[float, float]]:
    """Return centroid (lat, lon) for a GeoJSON geometry."""

    if not geometry:
        return None

    try:
        centroid = shape(geometry).centroid
    except (GEOSException, ValueError, TypeError, KeyError, IndexError, AttributeError) as exc:
        logger.debug("Cannot compute centroid: %s", exc)
        return None

    if centroid.is_empty:
        return None
    lat, lon = centroid.y, centroid.x
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    return lat, lon


def geodesic_area_m2(geometry: Optional[dict]) -> float:
    """Geodesic surface area of a (multi)polygon on the WGS84 ellipsoid, in m².

    Returns ``nan`` for geometries that cannot be interpreted.
    """

    if not geometry or geometry.get("type") not in POLYGON_TYPES:
        return math.nan

    try:
        area, _ = _GEOD.geometry_area_perimeter(shape(geometry))
    except (GEOSException, ValueError, TypeError, KeyError, IndexError, AttributeError) as exc:
        logger.debug("Cannot compute area: %s", exc)
        return math.nan
    return abs(area)


def circle_ring(lat: float, lon: float, radius_km: float, segments: int = 64) -> List[List[float]]:
    """Closed [lon, lat] ring approximating a geodesic circle."""

    ring: List[List[float]] = []
    for step in range(segments):
        azimuth = 360.0 * step / segments
        dest_lon, dest_lat, _ = _GEOD.fwd(lon, lat, azimuth, radius_km * 1000.0)
        ring.append([dest_lon, dest_lat])
    ring.append(list(ring[0]))
    return ring


def simplify_geometry(geometry: dict, tolerance: float = 0.0005) -> Optional[dict]:
    """Return a simplified version of the geometry (GeoJSON-like)."""

    try:
        simplified = shape(geometry).simplify(tolerance, preserve_topology=True)
    except (GEOSException, ValueError, TypeError, KeyError, IndexError, AttributeError):
        return None

    if simplified.is_empty:
        return None
    return json_geometry(simplified)


def json_geometry(geom) -> dict:
    """Convert a shapely geometry back into a GeoJSON-like dict."""

    mapping = geom.__geo_interface__
    return dict(mapping)
