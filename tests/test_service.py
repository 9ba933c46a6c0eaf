import math

import pytest

from agrisupply.cache import PipelineCaches
from agrisupply.cancellation import RequestSlots
from agrisupply.config import Settings
from agrisupply.locations import DatasetLoader
from agrisupply.model import AggregationRequest, ResultStatus
from agrisupply.overpass import OverpassClient
from agrisupply.service import IndexUnavailableError, SupplyService
from fakes import FakeResponse, FakeSession, overpass_payload, square_ring, way

BASE_URL = "http://data.test/"

WTP_CSV = (
    "name,country,province,lat,lon,kg_n_per_year\n"
    "North,FR,Île-de-France,48.90,2.30,1000\n"
    "South,France,ile de france,48.88,2.32,500\n"
    "Rennes,FR,Bretagne,48.11,-1.68,300\n"
    "Unplaced,FR,Île-de-France,,,999\n"
)

AIRPORTS_CSV = (
    "airport;province_country;location;n_kg_per_year\n"
    "Orly;Île-de-France, France;48.72, 2.38;200\n"
)

DATASETS = {
    BASE_URL + "wtp_all.csv": FakeResponse(text=WTP_CSV),
    BASE_URL + "Airports_NUTS2_supply.csv": FakeResponse(text=AIRPORTS_CSV),
}

LAND_USE = overpass_payload(
    way(1, square_ring(48.90, 2.30)),
    way(2, square_ring(48.72, 2.38, half=0.002)),
    way(3, square_ring(48.80, 2.30)),  # between the circles
    way(4, square_ring(48.88, 2.32), landuse="vineyard"),
)


def _service(posts=(), gets=None, **overrides):
    options = dict(
        dataset_base_url=BASE_URL,
        overpass_endpoints=["https://a.test/api", "https://b.test/api"],
        overpass_max_attempts=2,
        overpass_backoff_base_s=0.0,
        overpass_jitter_s=0.0,
    )
    options.update(overrides)
    settings = Settings(**options)
    caches = PipelineCaches()
    overpass = FakeSession(posts=posts)
    service = SupplyService(
        settings=settings,
        loader=DatasetLoader(settings, session=FakeSession(gets=DATASETS if gets is None else gets), cache=caches.datasets),
        client=OverpassClient.from_settings(settings, cache=caches.parcels, session=overpass),
        caches=caches,
        slots=RequestSlots(),
    )
    return service, overpass


def _request(**kwargs):
    options = dict(country="FR", province="Île-de-France", radius_km=2.0, landuse_tags=["farmland"])
    options.update(kwargs)
    return AggregationRequest(**options)


def test_aggregate_attributes_supply_to_parcels():
    service, overpass = _service(posts=[FakeResponse(payload=LAND_USE)])
    result = service.aggregate(_request())

    assert result.status is ResultStatus.ready
    assert (result.country, result.province) == ("France", "Île-de-France")
    assert sorted(p.name for p in result.points) == ["North", "Orly", "South"]
    assert (result.supply.primary_kg, result.supply.auxiliary_kg, result.supply.total_kg) == (1500.0, 200.0, 1700.0)
    assert sorted(p.osm_id for p in result.parcels) == ["way/1", "way/2"]
    assert math.isclose(sum(p.fertilizer_share for p in result.parcels), 1700.0, rel_tol=1e-9)
    assert math.isclose(result.demand.total_area_m2, sum(p.area_m2 for p in result.parcels), rel_tol=1e-12)
    assert len(result.warnings) == 4
    assert len(overpass.calls) == 1
    assert service.status() is ResultStatus.ready


def test_repeated_aggregation_reuses_cached_land_use():
    service, overpass = _service(posts=[FakeResponse(payload=LAND_USE)])

    first = service.aggregate(_request())
    second = service.aggregate(_request())

    assert len(overpass.calls) == 1
    assert [p.osm_id for p in first.parcels] == [p.osm_id for p in second.parcels]


def test_primary_dataset_failure_is_an_error():
    service, overpass = _service(gets={BASE_URL + "Airports_NUTS2_supply.csv": FakeResponse(text=AIRPORTS_CSV)})
    result = service.aggregate(_request())

    assert result.status is ResultStatus.error
    assert "wtp" in result.message
    assert result.points == []
    assert overpass.calls == []


def test_geodata_failure_keeps_points_and_supply():
    service, overpass = _service(posts=[FakeResponse(status_code=503)] * 2)
    result = service.aggregate(_request(), context_id="map")

    assert result.status is ResultStatus.error
    assert result.message.startswith("Agricultural land could not be retrieved")
    assert len(result.points) == 3
    assert result.parcels == []
    assert result.supply.total_kg == 1700.0
    assert len(overpass.calls) == 2
    assert service.status("map") is ResultStatus.error


def test_zero_radius_skips_geodata():
    service, overpass = _service(posts=[FakeResponse(payload=LAND_USE)])
    result = service.aggregate(_request(radius_km=0))

    assert result.status is ResultStatus.ready
    assert result.parcels == []
    assert result.demand.total_area_m2 == 0.0
    assert overpass.calls == []


def test_no_landuse_tags_skips_geodata():
    service, overpass = _service(posts=[FakeResponse(payload=LAND_USE)])
    result = service.aggregate(_request(landuse_tags=[]))

    assert result.status is ResultStatus.ready
    assert len(result.points) == 3
    assert overpass.calls == []


def test_invalid_request_raises_before_claiming():
    service, _ = _service()

    with pytest.raises(ValueError):
        service.aggregate(_request(landuse_tags=["parking"]))
    with pytest.raises(ValueError):
        service.aggregate(_request(dataset_keys=["harbours"]))
    assert service.status() is None


def test_dataset_selection():
    service, overpass = _service(posts=[FakeResponse(payload=LAND_USE)])
    result = service.aggregate(_request(dataset_keys=["AIRPORTS"], include_primary=False))

    assert [p.name for p in result.points] == ["Orly"]
    assert (result.supply.primary_kg, result.supply.auxiliary_kg) == (0.0, 200.0)
    assert result.warnings == []
    assert [p.osm_id for p in result.parcels] == ["way/2"]


def test_superseded_request_is_cancelled():
    service, overpass = _service()

    def supersede():
        service.slots.claim("map")
        return FakeResponse(payload=LAND_USE)

    overpass.posts.append(supersede)
    result = service.aggregate(_request(), context_id="map")

    assert result.status is ResultStatus.cancelled
    assert result.parcels == []
    assert service.status("map") is ResultStatus.loading
    assert len(service.caches.parcels) == 0


def test_region_supply_of_unknown_province_is_empty():
    service, _ = _service()
    supply = service.region_supply("Italy", "Lombardia")

    assert supply.status is ResultStatus.ready
    assert supply.points == []
    assert supply.supply.total_kg == 0.0


def test_build_index():
    service, _ = _service()
    index = service.build_index()

    assert index.countries == ["France"]
    assert index.provinces_by_country["France"] == ["Bretagne", "Île-de-France"]
    assert len(index.failed_datasets) == 4


def test_build_index_without_any_dataset():
    service, _ = _service(gets={})

    with pytest.raises(IndexUnavailableError):
        service.build_index()


def test_malformed_land_use_elements_do_not_fail_aggregation():
    bad_way = way(9, square_ring(48.90, 2.30))
    bad_way["geometry"][0]["lon"] = "x"
    payload = overpass_payload(bad_way, 42, way(1, square_ring(48.90, 2.30)))
    service, _ = _service(posts=[FakeResponse(payload=payload)])
    result = service.aggregate(_request(), context_id="map")

    assert result.status is ResultStatus.ready
    assert [p.osm_id for p in result.parcels] == ["way/1"]
    assert service.status("map") is ResultStatus.ready


def test_non_finite_radius_gives_empty_catchment():
    service, overpass = _service(posts=[FakeResponse(payload=LAND_USE)])
    result = service.aggregate(_request(radius_km=float("nan")))

    assert result.status is ResultStatus.ready
    assert result.radius_km == 0.0
    assert result.parcels == []
    assert overpass.calls == []
