"""Dataset loading, the country/province index and region filtering."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

import requests

from .cache import InsertOnlyCache
from .cancellation import CancellationToken, OperationCancelled
from .catalog import PRIMARY_DATASET, Dataset
from .config import Settings
from .model import CountryProvinceIndex, LocationPoint, SupplyTotals
from .normalize import fold, normalize_country, normalize_province, parse_points

logger = logging.getLogger(__name__)


class DatasetFetchError(RuntimeError):
    """Raised when a dataset cannot be retrieved."""


@dataclass(slots=True)
class DatasetLoad:
    """Outcome of loading one dataset: points on success, an error message otherwise."""

    dataset: Dataset
    points: List[LocationPoint] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DatasetLoader:
    """Fetches delimited-text datasets over HTTP(S) and parses them into points."""

    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        cache: Optional[InsertOnlyCache[str]] = None,
    ) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self.cache = cache

    def fetch_text(self, dataset: Dataset, token: Optional[CancellationToken] = None) -> str:
        url = dataset.url(self.settings.dataset_base_url)
        if self.cache is not None:
            cached = self.cache.get(url)
            if cached is not None:
                return cached

        if token is not None:
            token.raise_if_cancelled()
        try:
            response = self.session.get(url, timeout=self.settings.dataset_timeout_s)
        except requests.RequestException as exc:
            raise DatasetFetchError(f"Failed to load dataset '{dataset.key}' from {url}: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise DatasetFetchError(f"Failed to load dataset '{dataset.key}' from {url} ({response.status_code})")

        text = response.content.decode("utf-8-sig", errors="replace")
        if token is not None:
            token.raise_if_cancelled()
        if self.cache is not None:
            text = self.cache.add(url, text)
        return text

    def load(self, dataset: Dataset, token: Optional[CancellationToken] = None) -> List[LocationPoint]:
        return parse_points(self.fetch_text(dataset, token), dataset.key)

    def load_many(
        self,
        datasets: Sequence[Dataset],
        token: Optional[CancellationToken] = None,
    ) -> List[DatasetLoad]:
        """Load datasets concurrently; a failing dataset is reported, not raised."""

        if not datasets:
            return []

        def _load(dataset: Dataset) -> DatasetLoad:
            try:
                return DatasetLoad(dataset=dataset, points=self.load(dataset, token))
            except DatasetFetchError as exc:
                logger.warning("%s", exc)
                return DatasetLoad(dataset=dataset, error=str(exc))

        workers = min(self.settings.dataset_workers, len(datasets))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            loads = list(pool.map(_load, datasets))

        if token is not None and token.cancelled:
            raise OperationCancelled()
        return loads


def build_index(loads: Iterable[DatasetLoad], allowed_countries: Iterable[str]) -> CountryProvinceIndex:
    """Merge provinces of every successfully loaded dataset per allowed country."""

    allowed = {normalize_country(country) for country in allowed_countries}
    provinces: Dict[str, Dict[str, str]] = {}
    failed: List[str] = []
    warnings: List[str] = []

    for load in loads:
        if not load.ok:
            failed.append(load.dataset.key)
            warnings.append(load.error or f"Dataset '{load.dataset.key}' unavailable.")
            continue
        for point in load.points:
            if point.country not in allowed or not point.province:
                continue
            by_key = provinces.setdefault(point.country, {})
            key = fold(point.province)
            current = by_key.get(key)
            if current is None or _sort_key(point.province) < _sort_key(current):
                by_key[key] = point.province

    countries = sorted(provinces, key=_sort_key)
    return CountryProvinceIndex(
        countries=countries,
        provinces_by_country={
            country: sorted(provinces[country].values(), key=_sort_key) for country in countries
        },
        failed_datasets=failed,
        warnings=warnings,
    )


def _sort_key(name: str) -> tuple:
    return fold(name), name


def region_matches(point: LocationPoint, country: Optional[str], province: Optional[str]) -> bool:
    """Case- and accent-insensitive (country, province) match; blank means any."""

    wanted_country = normalize_country(country)
    if wanted_country and fold(point.country) != fold(wanted_country):
        return False
    wanted_province = normalize_province(province)
    if wanted_province and fold(point.province) != fold(wanted_province):
        return False
    return True


def filter_region(
    points: Iterable[LocationPoint],
    country: Optional[str],
    province: Optional[str],
    require_coordinates: bool = True,
) -> List[LocationPoint]:
    return [
        point
        for point in points
        if region_matches(point, country, province) and (point.has_coordinates or not require_coordinates)
    ]


def supply_totals(points: Iterable[LocationPoint], primary_key: str = PRIMARY_DATASET.key) -> SupplyTotals:
    """Sum quantities of located points, split into primary and auxiliary supply."""

    primary = 0.0
    auxiliary = 0.0
    for point in points:
        if not point.has_coordinates:
            continue
        if point.dataset_key == primary_key:
            primary += point.quantity
        else:
            auxiliary += point.quantity
    return SupplyTotals(primary_kg=primary, auxiliary_kg=auxiliary, total_kg=primary + auxiliary)
