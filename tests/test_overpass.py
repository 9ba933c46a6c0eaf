import pytest
import requests

from agrisupply.cache import InsertOnlyCache
from agrisupply.cancellation import CancellationToken, OperationCancelled
from agrisupply.geo import BoundingBox
from agrisupply.overpass import GeodataFetchError, OverpassClient, build_query, validate_tags
from fakes import FakeResponse, FakeSession, overpass_payload, square_ring, way

ENDPOINTS = ["https://a.test/api", "https://b.test/api", "https://c.test/api"]
BBOX = BoundingBox(south=44.9, west=8.9, north=45.1, east=9.1)


def _client(session, **kwargs):
    options = dict(endpoints=ENDPOINTS, backoff_base=0.0, jitter=0.0, session=session)
    options.update(kwargs)
    return OverpassClient(**options)


def _ok(*elements):
    return FakeResponse(payload=overpass_payload(*elements))


class RecordingToken(CancellationToken):
    def __init__(self):
        super().__init__()
        self.waits = []

    def wait(self, seconds):
        self.waits.append(seconds)
        return False


def test_validate_tags_orders_and_rejects():
    assert validate_tags(["vineyard", "farmland", " farmland "]) == ["farmland", "vineyard"]
    assert validate_tags([]) == []
    with pytest.raises(ValueError):
        validate_tags(["farmland", "parking"])


def test_build_query():
    query = build_query(BBOX, ["orchard", "farmland"], timeout=60)

    assert query.startswith("[out:json][timeout:60];")
    assert 'nwr["landuse"~"^(farmland|orchard)$"](44.9,8.9,45.1,9.1);' in query
    assert query.rstrip().endswith("out geom;")


def test_retries_rotate_endpoints_until_success():
    session = FakeSession(
        posts=[
            requests.ConnectionError("refused"),
            FakeResponse(status_code=504),
            requests.Timeout("slow"),
            _ok(way(1, square_ring(45.0, 9.0))),
        ]
    )
    parcels = _client(session).fetch_parcels(BBOX, ["farmland"])

    assert [p.osm_id for p in parcels] == ["way/1"]
    assert session.urls("POST") == ENDPOINTS + ENDPOINTS[:1]
    assert "farmland" in session.calls[0][2]["data"]


def test_exhausted_retries_raise_geodata_error():
    session = FakeSession(posts=[FakeResponse(status_code=429)] * 4)

    with pytest.raises(GeodataFetchError):
        _client(session).fetch_parcels(BBOX, ["farmland"])
    assert len(session.calls) == 4


def test_error_remark_and_non_json_are_retried():
    session = FakeSession(
        posts=[
            FakeResponse(payload={"elements": [], "remark": "runtime error: Query timed out"}),
            FakeResponse(payload=None),
            _ok(),
        ]
    )
    assert _client(session).fetch_parcels(BBOX, ["farmland"]) == []
    assert len(session.calls) == 3


def test_backoff_grows_and_is_capped():
    token = RecordingToken()
    session = FakeSession(posts=[FakeResponse(status_code=500)] * 4)
    client = _client(session, backoff_base=1.5, backoff_cap=4.0, jitter=0.0)

    with pytest.raises(GeodataFetchError):
        client.fetch_parcels(BBOX, ["farmland"], token=token)
    assert token.waits == [1.5, 3.0, 4.0]


def test_only_enabled_polygon_features_become_parcels():
    session = FakeSession(
        posts=[
            _ok(
                way(1, square_ring(45.0, 9.0)),
                way(2, square_ring(45.01, 9.0), landuse="vineyard"),
                way(3, square_ring(45.02, 9.0)[:3]),
                {"type": "node", "id": 4, "lat": 45.0, "lon": 9.0, "tags": {"landuse": "farmland"}},
            )
        ]
    )
    parcels = _client(session).fetch_parcels(BBOX, ["farmland"])

    assert [p.osm_id for p in parcels] == ["way/1"]
    assert parcels[0].landuse == "farmland"
    assert parcels[0].fertilizer_share is None


def test_no_enabled_tags_skips_request():
    session = FakeSession()
    assert _client(session).fetch_parcels(BBOX, []) == []
    assert session.calls == []


def test_cached_response_short_circuits():
    cache = InsertOnlyCache("parcels")
    session = FakeSession(posts=[_ok(way(1, square_ring(45.0, 9.0)))])
    client = _client(session, cache=cache)

    first = client.fetch_parcels(BBOX, ["farmland"], cache_key="k")
    second = client.fetch_parcels(BBOX, ["farmland"], cache_key="k")

    assert len(session.calls) == 1
    assert [p.osm_id for p in first] == [p.osm_id for p in second] == ["way/1"]
    assert "k" in cache


def test_failed_fetch_is_not_cached():
    cache = InsertOnlyCache("parcels")
    session = FakeSession(posts=[FakeResponse(status_code=500)] * 4)

    with pytest.raises(GeodataFetchError):
        _client(session, cache=cache).fetch_parcels(BBOX, ["farmland"], cache_key="k")
    assert len(cache) == 0


def test_cancelled_token_stops_before_request():
    token = CancellationToken()
    token.cancel()
    session = FakeSession(posts=[_ok()])

    with pytest.raises(OperationCancelled):
        _client(session).fetch_parcels(BBOX, ["farmland"], token=token)
    assert session.calls == []


def test_cancellation_interrupts_backoff():
    token = CancellationToken()

    def fail_and_cancel():
        token.cancel()
        return requests.ConnectionError("refused")

    session = FakeSession(posts=[fail_and_cancel, _ok()])
    client = _client(session, backoff_base=30.0, backoff_cap=30.0)

    with pytest.raises(OperationCancelled):
        client.fetch_parcels(BBOX, ["farmland"], token=token)
    assert len(session.calls) == 1


def test_response_of_superseded_request_is_not_cached():
    token = CancellationToken()
    cache = InsertOnlyCache("parcels")

    def respond_after_cancel():
        token.cancel()
        return _ok(way(1, square_ring(45.0, 9.0)))

    session = FakeSession(posts=[respond_after_cancel])

    with pytest.raises(OperationCancelled):
        _client(session, cache=cache).fetch_parcels(BBOX, ["farmland"], cache_key="k", token=token)
    assert "k" not in cache


def test_client_requires_endpoints():
    with pytest.raises(ValueError):
        OverpassClient(endpoints=[], session=FakeSession())
