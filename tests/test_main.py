import pytest
from fastapi.testclient import TestClient

from agrisupply.main import app, get_supply_service
from fakes import FakeResponse
from test_service import LAND_USE, _service


@pytest.fixture
def client_for():
    def factory(service):
        app.dependency_overrides[get_supply_service] = lambda: service
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()


def _params(**extra):
    params = {"country": "FR", "province": "Île-de-France", "radius_km": 2.0, "landuse": ["farmland"]}
    params.update(extra)
    return params


def test_health():
    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_index(client_for):
    service, _ = _service()
    response = client_for(service).get("/index")

    assert response.status_code == 200
    assert response.json()["provinces_by_country"] == {"France": ["Bretagne", "Île-de-France"]}


def test_index_unavailable(client_for):
    service, _ = _service(gets={})
    assert client_for(service).get("/index").status_code == 503


def test_region_points(client_for):
    service, _ = _service()
    response = client_for(service).get("/regions/France/Bretagne/points")

    assert response.status_code == 200
    body = response.json()
    assert [p["name"] for p in body["points"]] == ["Rennes"]
    assert body["supply"]["primary_kg"] == 300.0


def test_aggregate_and_status(client_for):
    service, _ = _service(posts=[FakeResponse(payload=LAND_USE)])
    client = client_for(service)

    response = client.get("/aggregate", params=_params(context="map"))
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ready"
    assert sorted(p["osm_id"] for p in body["parcels"]) == ["way/1", "way/2"]

    status = client.get("/aggregate/status", params={"context": "map"}).json()
    assert status == {"context": "map", "status": "ready"}


def test_aggregate_rejects_unknown_tags(client_for):
    service, overpass = _service()
    response = client_for(service).get("/aggregate", params=_params(landuse=["parking"]))

    assert response.status_code == 400
    assert "parking" in response.json()["detail"]
    assert overpass.calls == []


def test_aggregate_geodata_failure(client_for):
    service, _ = _service(posts=[FakeResponse(status_code=503)] * 2)
    response = client_for(service).get("/aggregate", params=_params())

    assert response.status_code == 502
    body = response.json()
    assert body["status"] == "error"
    assert len(body["points"]) == 3


def test_export_parcels_csv(client_for):
    service, _ = _service(posts=[FakeResponse(payload=LAND_USE)])
    response = client_for(service).get("/export/parcels.csv", params=_params())

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0] == "osm_id,landuse,area_m2,fertilizer_share"
    assert len(lines) == 3


@pytest.mark.parametrize("radius", ["nan", "inf", "-inf"])
def test_aggregate_rejects_non_finite_radius(client_for, radius):
    service, overpass = _service(posts=[FakeResponse(payload=LAND_USE)])
    response = client_for(service).get("/aggregate", params=_params(radius_km=radius))

    assert response.status_code == 422
    assert overpass.calls == []
