"""Circular catchment areas around supply points."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .geo import BoundingBox, circle_ring, geometry_centroid, haversine_km
from .model import LocationPoint

KM_PER_DEGREE = 111.0


@dataclass(slots=True, frozen=True)
class CircleBox:
    """One supply circle plus its padded bounding box."""

    lat: float
    lon: float
    box: BoundingBox


def degree_padding(lat: float, radius_km: float) -> Tuple[float, float]:
    """Latitude and longitude padding (degrees) covering ``radius_km`` around ``lat``."""

    lat_pad = radius_km / KM_PER_DEGREE
    cos_lat = math.cos(math.radians(lat))
    if abs(cos_lat) < 1e-12:
        cos_lat = 1.0
    lon_pad = radius_km / (KM_PER_DEGREE * abs(cos_lat))
    return lat_pad, lon_pad


@dataclass(slots=True, frozen=True)
class CatchmentArea:
    """Union of equal-radius circles centred on supply points.

    Membership is decided on a geometry's centroid: a parcel straddling the
    circle edge is kept or dropped as a whole depending on where its
    centroid falls.
    """

    radius_km: float
    circles: Tuple[CircleBox, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.circles

    def bounding_box(self) -> Optional[BoundingBox]:
        if self.is_empty:
            return None
        result = self.circles[0].box
        for circle in self.circles[1:]:
            result = result.union(circle.box)
        return result

    def contains_point(self, lat: float, lon: float) -> bool:
        if self.is_empty or not (math.isfinite(lat) and math.isfinite(lon)):
            return False
        for circle in self.circles:
            if not circle.box.contains(lat, lon):
                continue
            if haversine_km(lat, lon, circle.lat, circle.lon) <= self.radius_km:
                return True
        return False

    def contains_geometry(self, geometry: Optional[dict]) -> bool:
        if self.is_empty:
            return False
        centroid = geometry_centroid(geometry)
        if centroid is None:
            return False
        return self.contains_point(*centroid)

    def circles_geojson(self, segments: int = 64) -> List[dict]:
        """Circle outlines as GeoJSON features for map overlays."""

        return [
            {
                "type": "Feature",
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [circle_ring(circle.lat, circle.lon, self.radius_km, segments)],
                },
                "properties": {"center": [circle.lat, circle.lon], "radius_km": self.radius_km},
            }
            for circle in self.circles
        ]


def build_catchment(points: Iterable[LocationPoint], radius_km: float) -> CatchmentArea:
    """Build the catchment for ``points``; empty for a non-positive or non-finite radius."""

    try:
        radius = float(radius_km)
    except (TypeError, ValueError):
        radius = 0.0
    if not math.isfinite(radius) or radius <= 0:
        return CatchmentArea(radius_km=0.0)

    circles: List[CircleBox] = []
    for point in points:
        if not point.has_coordinates:
            continue
        lat, lon = point.latitude, point.longitude
        lat_pad, lon_pad = degree_padding(lat, radius)
        circles.append(
            CircleBox(
                lat=lat,
                lon=lon,
                box=BoundingBox(
                    south=lat - lat_pad,
                    west=lon - lon_pad,
                    north=lat + lat_pad,
                    east=lon + lon_pad,
                ),
            )
        )

    return CatchmentArea(radius_km=radius, circles=tuple(circles))
