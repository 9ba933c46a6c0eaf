"""Conversion of Overpass ``out geom`` responses into GeoJSON features."""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from shapely.errors import GEOSException
from shapely.geometry import LineString
from shapely.ops import polygonize, unary_union

from .geo import POLYGON_TYPES, json_geometry

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float]


def _coordinates(points: Optional[Sequence[Dict[str, Any]]]) -> List[Coordinate]:
    coords: List[Coordinate] = []
    for point in points or []:
        if not isinstance(point, dict) or point.get("lat") is None or point.get("lon") is None:
            continue
        coords.append((_number(point["lon"]), _number(point["lat"])))
    return coords


def _number(value: Any) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"non-finite coordinate {value!r}")
    return number


def _feature(element: Dict[str, Any], geometry: dict) -> dict:
    tags = element.get("tags") or {}
    osm_id = f"{element.get('type')}/{element.get('id')}"
    return {
        "type": "Feature",
        "id": osm_id,
        "geometry": geometry,
        "properties": {"osm_id": osm_id, "landuse": tags.get("landuse"), "tags": dict(tags)},
    }


def _way_geometry(element: Dict[str, Any]) -> Optional[dict]:
    coords = _coordinates(element.get("geometry"))
    if len(coords) >= 4 and coords[0] == coords[-1]:
        return {"type": "Polygon", "coordinates": [[list(c) for c in coords]]}
    if len(coords) >= 2:
        return {"type": "LineString", "coordinates": [list(c) for c in coords]}
    return None


def _member_lines(members: Iterable[Dict[str, Any]], roles: Tuple[str, ...]) -> List[LineString]:
    lines: List[LineString] = []
    for member in members:
        if member.get("type") != "way" or (member.get("role") or "") not in roles:
            continue
        coords = _coordinates(member.get("geometry"))
        if len(coords) >= 2:
            lines.append(LineString(coords))
    return lines


def _relation_geometry(element: Dict[str, Any]) -> Optional[dict]:
    """Assemble a multipolygon relation by stitching its member ways into rings."""

    tags = element.get("tags") or {}
    if tags.get("type") not in ("multipolygon", "boundary"):
        return None

    members = element.get("members") or []
    outer_lines = _member_lines(members, ("outer", ""))
    if not outer_lines:
        return None

    try:
        shell = unary_union(list(polygonize(outer_lines)))
        inner_lines = _member_lines(members, ("inner",))
        if inner_lines and not shell.is_empty:
            shell = shell.difference(unary_union(list(polygonize(inner_lines))))
    except (GEOSException, ValueError) as exc:
        logger.debug("Cannot assemble relation %s: %s", element.get("id"), exc)
        return None

    if shell.is_empty or shell.geom_type not in POLYGON_TYPES:
        return None
    return json_geometry(shell)


def overpass_to_features(payload: Dict[str, Any]) -> List[dict]:
    """Convert the ``elements`` of an Overpass JSON response into GeoJSON features.

    Elements that cannot be interpreted (non-dict entries, non-numeric
    coordinates, malformed tags) are skipped.
    """

    elements = payload.get("elements")
    if not isinstance(elements, list):
        return []

    features: List[dict] = []
    for element in elements:
        if not isinstance(element, dict):
            continue
        try:
            geometry = _element_geometry(element)
            if geometry is not None:
                features.append(_feature(element, geometry))
        except (TypeError, ValueError, AttributeError) as exc:
            logger.debug("Skipping malformed element %s/%s: %s", element.get("type"), element.get("id"), exc)
    return features


def _element_geometry(element: Dict[str, Any]) -> Optional[dict]:
    kind = element.get("type")
    if kind == "way":
        return _way_geometry(element)
    if kind == "relation":
        return _relation_geometry(element)
    if kind == "node" and element.get("tags"):
        if element.get("lat") is None or element.get("lon") is None:
            return None
        lon, lat = _number(element["lon"]), _number(element["lat"])
        return {"type": "Point", "coordinates": [lon, lat]}
    return None
