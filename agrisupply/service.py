"""Supply/demand aggregation pipeline for a selected region."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .attribution import attribute, summarize_demand
from .cache import PipelineCaches, get_caches, parcel_cache_key
from .cancellation import CancellationToken, OperationCancelled, RequestSlots, get_request_slots
from .catalog import AUXILIARY_DATASETS, LANDUSE_TAGS, PRIMARY_DATASET, Dataset, get_dataset, list_all_datasets
from .catchment import build_catchment
from .config import Settings, get_settings
from .locations import DatasetLoader, build_index, filter_region, supply_totals
from .model import (
    AggregationRequest,
    AggregationResult,
    CountryProvinceIndex,
    RegionSupply,
    ResultStatus,
)
from .normalize import normalize_country, normalize_province
from .overpass import GeodataFetchError, OverpassClient, validate_tags

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT = "default"


class IndexUnavailableError(RuntimeError):
    """Raised when no dataset could be loaded to build the location index."""


class SupplyService:
    """Main orchestrator from raw datasets to attributed land parcels."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        loader: Optional[DatasetLoader] = None,
        client: Optional[OverpassClient] = None,
        caches: Optional[PipelineCaches] = None,
        slots: Optional[RequestSlots] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.caches = caches or get_caches()
        self.loader = loader or DatasetLoader(self.settings, cache=self.caches.datasets)
        self.client = client or OverpassClient.from_settings(self.settings, cache=self.caches.parcels)
        self.slots = slots or get_request_slots()

    # ------------------------------------------------------------------
    # Location index
    # ------------------------------------------------------------------
    def build_index(self, token: Optional[CancellationToken] = None) -> CountryProvinceIndex:
        loads = self.loader.load_many(list_all_datasets(), token)
        if loads and not any(load.ok for load in loads):
            raise IndexUnavailableError("; ".join(load.error or load.dataset.key for load in loads))

        index = build_index(loads, self.settings.allowed_countries)
        if index.failed_datasets:
            logger.warning("Location index built without: %s", ", ".join(index.failed_datasets))
        return index

    # ------------------------------------------------------------------
    # Region supply
    # ------------------------------------------------------------------
    def select_datasets(self, dataset_keys: Optional[Iterable[str]], include_primary: bool = True) -> List[Dataset]:
        selected: List[Dataset] = [PRIMARY_DATASET] if include_primary else []
        if dataset_keys is None:
            selected.extend(AUXILIARY_DATASETS)
            return selected

        for key in dataset_keys:
            dataset = get_dataset(key)
            if dataset is None:
                raise ValueError(f"Unknown dataset '{key}'.")
            if dataset.primary or dataset in selected:
                continue
            selected.append(dataset)
        return selected

    def region_supply(
        self,
        country: str,
        province: str,
        dataset_keys: Optional[Iterable[str]] = None,
        include_primary: bool = True,
        token: Optional[CancellationToken] = None,
    ) -> RegionSupply:
        """Located supply points of a region, with per-category totals."""

        datasets = self.select_datasets(dataset_keys, include_primary)
        loads = self.loader.load_many(datasets, token)

        points = []
        warnings: List[str] = []
        primary_error: Optional[str] = None
        for load in loads:
            if not load.ok:
                if load.dataset.primary:
                    primary_error = load.error
                else:
                    warnings.append(load.error or f"Dataset '{load.dataset.key}' unavailable.")
                continue
            points.extend(filter_region(load.points, country, province))

        country_name = normalize_country(country)
        province_name = normalize_province(province)
        if primary_error:
            return RegionSupply(
                status=ResultStatus.error,
                message=primary_error,
                country=country_name,
                province=province_name,
                warnings=warnings,
            )

        logger.debug("Region %s/%s has %d located supply point(s)", country_name, province_name, len(points))
        return RegionSupply(
            country=country_name,
            province=province_name,
            points=points,
            supply=supply_totals(points),
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------
    def aggregate(self, request: AggregationRequest, context_id: str = DEFAULT_CONTEXT) -> AggregationResult:
        """Run the full pipeline; supersedes any in-flight request of ``context_id``.

        Raises ``ValueError`` for unknown land-use tags or dataset keys. Every
        other outcome is reported through ``AggregationResult.status``.
        """

        tags = validate_tags(LANDUSE_TAGS if request.landuse_tags is None else request.landuse_tags)
        self.select_datasets(request.dataset_keys, request.include_primary)

        token = self.slots.claim(context_id)
        try:
            result = self._aggregate(request, tags, token)
            token.raise_if_cancelled()
        except OperationCancelled:
            logger.debug("Aggregation for context %s superseded", context_id)
            result = AggregationResult(
                status=ResultStatus.cancelled,
                country=normalize_country(request.country),
                province=normalize_province(request.province),
                radius_km=request.radius_km,
                landuse_tags=tags,
            )
        except Exception:
            self.slots.finish(context_id, token, ResultStatus.error)
            raise
        self.slots.finish(context_id, token, result.status)
        return result

    def status(self, context_id: str = DEFAULT_CONTEXT) -> Optional[ResultStatus]:
        return self.slots.status(context_id)

    def _aggregate(self, request: AggregationRequest, tags: List[str], token: CancellationToken) -> AggregationResult:
        supply = self.region_supply(
            request.country,
            request.province,
            request.dataset_keys,
            request.include_primary,
            token,
        )
        kg_per_ha = self.settings.required_kg_n_per_ha
        base = dict(
            country=supply.country,
            province=supply.province,
            radius_km=request.radius_km,
            landuse_tags=tags,
            warnings=list(supply.warnings),
        )

        if supply.status is ResultStatus.error:
            return AggregationResult(status=ResultStatus.error, message=supply.message, **base)

        catchment = build_catchment(supply.points, request.radius_km)
        bbox = catchment.bounding_box()
        if not tags or bbox is None:
            return AggregationResult(
                status=ResultStatus.ready,
                points=supply.points,
                supply=supply.supply,
                demand=summarize_demand(0.0, supply.supply, kg_per_ha),
                **base,
            )

        cache_key = parcel_cache_key(
            tags,
            bbox,
            catchment.radius_km,
            len(catchment.circles),
            self.settings.cache_bbox_precision,
        )
        try:
            candidates = self.client.fetch_parcels(bbox, tags, cache_key=cache_key, token=token)
        except GeodataFetchError as exc:
            logger.warning("Land use unavailable for %s/%s: %s", supply.country, supply.province, exc)
            return AggregationResult(
                status=ResultStatus.error,
                message=f"Agricultural land could not be retrieved: {exc}",
                points=supply.points,
                supply=supply.supply,
                demand=summarize_demand(0.0, supply.supply, kg_per_ha),
                **base,
            )

        attribution = attribute(candidates, catchment, supply.supply.total_kg)
        return AggregationResult(
            status=ResultStatus.ready,
            points=supply.points,
            parcels=attribution.parcels,
            supply=supply.supply,
            demand=summarize_demand(attribution.total_area_m2, supply.supply, kg_per_ha),
            **base,
        )
