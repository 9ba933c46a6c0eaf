"""Proportional attribution of supply to land parcels by area share."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from .catchment import CatchmentArea
from .geo import POLYGON_TYPES, geodesic_area_m2
from .model import DemandSummary, LandParcel, SupplyTotals

logger = logging.getLogger(__name__)

M2_PER_HECTARE = 10_000.0
M2_PER_KM2 = 1_000_000.0


@dataclass(slots=True)
class AttributionResult:
    parcels: List[LandParcel] = field(default_factory=list)
    total_area_m2: float = 0.0
    total_quantity: float = 0.0


def attribute(
    parcels: Iterable[LandParcel],
    catchment: CatchmentArea,
    total_quantity: float,
    area_fn: Callable[[Optional[dict]], float] = geodesic_area_m2,
) -> AttributionResult:
    """Keep parcels inside ``catchment`` and split ``total_quantity`` by area.

    Each retained parcel gets ``total_quantity * area / sum(areas)``; the
    returned parcels are annotated copies of the inputs.
    """

    quantity = float(total_quantity) if total_quantity is not None else 0.0
    if not math.isfinite(quantity) or quantity < 0:
        quantity = 0.0

    if catchment.is_empty:
        return AttributionResult(total_quantity=quantity)

    retained: List[LandParcel] = []
    areas: List[float] = []
    candidates = 0
    for parcel in parcels:
        candidates += 1
        if parcel.geometry.get("type") not in POLYGON_TYPES:
            continue
        if not catchment.contains_geometry(parcel.geometry):
            continue
        area = area_fn(parcel.geometry)
        if area is None or not math.isfinite(area) or area <= 0:
            continue
        retained.append(parcel)
        areas.append(area)

    total_area = math.fsum(areas)
    annotated = [
        parcel.model_copy(
            update={
                "area_m2": area,
                "fertilizer_share": quantity * (area / total_area) if total_area > 0 else 0.0,
            }
        )
        for parcel, area in zip(retained, areas)
    ]

    logger.debug(
        "Retained %d of %d parcel(s), %.1f m2 total, %.1f kg attributed",
        len(annotated),
        candidates,
        total_area,
        quantity if total_area > 0 else 0.0,
    )
    return AttributionResult(parcels=annotated, total_area_m2=total_area, total_quantity=quantity)


def _coverage(supply_kg: float, demand_kg: float) -> float:
    return round(supply_kg / demand_kg * 100, 2) if demand_kg > 0 else 0.0


def summarize_demand(total_area_m2: float, supply: SupplyTotals, kg_per_ha: float) -> DemandSummary:
    """Nitrogen demand of the retained area and how much of it the supply covers."""

    demand_kg = total_area_m2 / M2_PER_HECTARE * kg_per_ha
    return DemandSummary(
        total_area_m2=total_area_m2,
        total_area_km2=total_area_m2 / M2_PER_KM2,
        demand_kg=demand_kg,
        primary_coverage_pc=_coverage(supply.primary_kg, demand_kg),
        auxiliary_coverage_pc=_coverage(supply.auxiliary_kg, demand_kg),
        total_coverage_pc=_coverage(supply.total_kg, demand_kg),
    )
