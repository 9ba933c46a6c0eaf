"""Pydantic data models exchanged with the rendering layer."""
from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class ResultStatus(str, Enum):
    loading = "loading"
    ready = "ready"
    error = "error"
    cancelled = "cancelled"


class LocationPoint(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    country: str = ""
    province: str = ""
    dataset_key: str
    quantity: float = 0.0  # kg N / year
    name: Optional[str] = None
    capacity_pe: Optional[float] = None  # population equivalent

    @property
    def has_coordinates(self) -> bool:
        if self.latitude is None or self.longitude is None:
            return False
        if self.latitude == 0 and self.longitude == 0:
            return False
        return -90 <= self.latitude <= 90 and -180 <= self.longitude <= 180


class CountryProvinceIndex(BaseModel):
    countries: List[str] = Field(default_factory=list)
    provinces_by_country: Dict[str, List[str]] = Field(default_factory=dict)
    failed_datasets: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class LandParcel(BaseModel):
    """A land-use polygon returned by the geodata service."""

    osm_id: str
    landuse: str
    geometry: Dict[str, Any]
    area_m2: Optional[float] = None
    fertilizer_share: Optional[float] = None  # kg N / year, set by attribution


class SupplyTotals(BaseModel):
    primary_kg: float = 0.0
    auxiliary_kg: float = 0.0
    total_kg: float = 0.0


class DemandSummary(BaseModel):
    """Supply versus nitrogen demand of the retained agricultural area."""

    total_area_m2: float = 0.0
    total_area_km2: float = 0.0
    demand_kg: float = 0.0
    primary_coverage_pc: float = 0.0
    auxiliary_coverage_pc: float = 0.0
    total_coverage_pc: float = 0.0


class RegionSupply(BaseModel):
    status: ResultStatus = ResultStatus.ready
    message: Optional[str] = None
    country: str
    province: str
    points: List[LocationPoint] = Field(default_factory=list)
    supply: SupplyTotals = Field(default_factory=SupplyTotals)
    warnings: List[str] = Field(default_factory=list)


class AggregationRequest(BaseModel):
    country: str
    province: str
    radius_km: float = 2.0
    landuse_tags: Optional[List[str]] = None  # None enables every tag
    dataset_keys: Optional[List[str]] = None  # auxiliary datasets; None enables all
    include_primary: bool = True

    @field_validator("radius_km")
    @classmethod
    def finite_radius(cls, value: float) -> float:
        # a non-finite radius means an empty catchment
        return value if math.isfinite(value) else 0.0


class AggregationResult(BaseModel):
    status: ResultStatus
    message: Optional[str] = None
    country: str
    province: str
    radius_km: float
    landuse_tags: List[str] = Field(default_factory=list)
    points: List[LocationPoint] = Field(default_factory=list)
    parcels: List[LandParcel] = Field(default_factory=list)
    supply: SupplyTotals = Field(default_factory=SupplyTotals)
    demand: DemandSummary = Field(default_factory=DemandSummary)
    warnings: List[str] = Field(default_factory=list)
