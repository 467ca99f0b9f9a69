import json

import pytest

from drivespots import config
from drivespots.boundaries import MunicipalityBoundaryStore
from drivespots.cache import TTLCache
from drivespots.http import UpstreamError
from drivespots.models import InvalidInputError, PlaceDetails, PointOfInterest, Review
from drivespots.quota import ISOLINE, PLACES, QuotaLimiter, RateLimitedError
from drivespots.service import (
    Clients,
    DiscoveryService,
    parse_origin,
    sanitize_text,
    sanitize_types,
)


class FakePlaces:
    def __init__(self, nearby_results=None, fail_first_nearby=False):
        self.nearby_results = nearby_results or []
        self.fail_first_nearby = fail_first_nearby
        self.nearby_calls = []
        self.text_calls = []
        self.details_calls = []

    def search_nearby(self, center, radius_m, included_types, max_results=20, field_mask=None):
        self.nearby_calls.append((center, radius_m, list(included_types)))
        if included_types == [config.MUNICIPALITY_TYPE]:
            return []
        if self.fail_first_nearby and len(self.nearby_calls) == 1:
            raise UpstreamError(503, "try again")
        return list(self.nearby_results)

    def search_text(self, query, included_type=None, page_size=None, field_mask=None):
        self.text_calls.append(query)
        return [
            PointOfInterest(id="s1", name="小樽運河", rating=4.4, rating_count=100, address="北海道小樽市"),
        ]

    def get_details(self, place_id):
        self.details_calls.append(place_id)
        return PlaceDetails(
            id=place_id,
            name="小樽運河",
            rating=4.4,
            rating_count=100,
            reviews=[Review(author="a", rating=5, text="良い", time=None)],
        )


class FakeRouting:
    def distance_matrix(self, origin, destinations):
        raise AssertionError("routing is not expected here")


class FakeIsoline:
    def __init__(self):
        self.calls = []

    def isoline(self, origin, budget):
        self.calls.append((origin, budget))
        return {"type": "Polygon", "coordinates": [[[141.2, 43.2], [141.4, 43.2], [141.4, 43.4], [141.2, 43.2]]]}


def make_service(tmp_path=None, places=None, hourly=1):
    limits = {
        PLACES: {"hourly": hourly, "daily": 100},
        ISOLINE: {"hourly": hourly, "daily": 100},
    }
    boundaries = None
    if tmp_path is not None:
        path = tmp_path / "admin.geojson"
        path.write_text(
            json.dumps(
                {
                    "type": "FeatureCollection",
                    "features": [
                        {
                            "type": "Feature",
                            "properties": {"id": "01100", "name": "札幌市"},
                            "geometry": {
                                "type": "Polygon",
                                "coordinates": [[[141.0, 43.0], [142.0, 43.0], [142.0, 44.0], [141.0, 44.0], [141.0, 43.0]]],
                            },
                        }
                    ],
                },
                ensure_ascii=False,
            ),
            encoding="utf-8",
        )
        boundaries = MunicipalityBoundaryStore(str(path))
    clients = Clients(places=places or FakePlaces(), routing=FakeRouting(), isoline=FakeIsoline())
    return DiscoveryService(clients, quotas=QuotaLimiter(limits), boundaries=boundaries)


def test_parse_origin():
    origin = parse_origin(" 43.06, 141.35 ")
    assert (origin.lat, origin.lon) == (43.06, 141.35)
    for bad in ("", "43.06", "abc,def", "91,0", "0,181"):
        with pytest.raises(InvalidInputError):
            parse_origin(bad)


def test_sanitizers():
    assert sanitize_text(" <小樽市>'$ ", 60) == "小樽市"
    assert sanitize_text("x" * 200, 120) == "x" * 120
    assert sanitize_types(["museum", "BAD-type", "park", 3]) == ["museum", "park"]
    assert sanitize_types(None) == config.NEARBY_DEFAULT_TYPES


def test_invalid_search_does_not_consume_quota():
    service = make_service()
    for params in (
        {"origin": "bad", "mode": "time", "value": "60"},
        {"origin": "43.06,141.35", "mode": "time", "value": "0"},
        {"origin": "43.06,141.35", "mode": "time", "value": "301"},
        {"origin": "43.06,141.35", "mode": "walk", "value": "60"},
        {"mode": "time", "value": "60"},
    ):
        with pytest.raises(InvalidInputError):
            service.search(params, "1.1.1.1")

    assert service.search({"origin": "43.06,141.35", "mode": "time", "value": "60"}, "1.1.1.1") == {
        "groups": []
    }


def test_search_cache_hit_skips_quota_and_rounds_origin():
    places = FakePlaces()
    service = make_service(places=places)
    first = service.search({"origin": "43.06,141.35", "mode": "time", "value": "60"}, "ip")
    second = service.search({"origin": "43.060004,141.349996", "mode": "time", "value": "60"}, "ip")

    assert first == second
    assert len(places.nearby_calls) == 1

    with pytest.raises(RateLimitedError):
        service.search({"origin": "43.06,141.35", "mode": "distance", "value": "60"}, "ip")
    # another identity still has its own quota
    service.search({"origin": "43.06,141.35", "mode": "distance", "value": "60"}, "other")


def test_empty_shared_cache_is_kept_and_reused():
    shared = TTLCache(60)
    first = DiscoveryService(Clients(FakePlaces(), FakeRouting(), FakeIsoline()), search_cache=shared)
    assert first.search_cache is shared

    first.search({"origin": "43.06,141.35", "mode": "time", "value": "60"}, "ip")
    assert len(shared) == 1

    places = FakePlaces()
    second = DiscoveryService(Clients(places, FakeRouting(), FakeIsoline()), search_cache=shared)
    second.search({"origin": "43.06,141.35", "mode": "time", "value": "60"}, "ip")
    assert places.nearby_calls == []


def test_max_workers_reaches_discovery(monkeypatch):
    seen = {}

    class Result:
        def to_dict(self):
            return {"groups": []}

    def fake_run_discovery(origin, budget, places, routing, max_workers=None, time_factor=None):
        seen["max_workers"] = max_workers
        return Result()

    monkeypatch.setattr("drivespots.service.run_discovery", fake_run_discovery)
    service = DiscoveryService(Clients(FakePlaces(), FakeRouting(), FakeIsoline()), max_workers=2)
    service.search({"origin": "43.06,141.35", "mode": "time", "value": "60"}, "ip")
    assert seen["max_workers"] == 2


def test_municipality_search_returns_flat_spots():
    places = FakePlaces()
    service = make_service(places=places)
    result = service.search({"municipality": "小樽市<script>"}, "ip")

    assert places.text_calls[0].startswith("小樽市script ")
    assert result == {
        "spots": [
            {
                "id": "s1",
                "name": "小樽運河",
                "lat": None,
                "lng": None,
                "rating": 4.4,
                "reviews": 100,
                "photoName": None,
                "mapsUrl": None,
            }
        ]
    }


def test_isochrone_validation_cache_and_quota(tmp_path):
    service = make_service(tmp_path)
    with pytest.raises(InvalidInputError):
        service.isochrone({"lat": "43.06", "lon": "141.35", "time": "45", "distance": "10"}, "ip")
    with pytest.raises(InvalidInputError):
        service.isochrone({"lat": "43.06", "lon": "141.35"}, "ip")
    with pytest.raises(InvalidInputError):
        service.isochrone({"lat": "x", "lon": "141.35", "time": "45"}, "ip")

    first = service.isochrone({"lat": "43.06", "lon": "141.35", "time": "45"}, "ip")
    again = service.isochrone({"lat": "43.06003", "lon": "141.35", "time": "45"}, "ip")

    assert first == again
    assert [c["name"] for c in first["cities"]] == ["札幌市"]
    assert len(service.clients.isoline.calls) == 1
    origin, budget = service.clients.isoline.calls[0]
    assert (origin.lat, origin.lon) == (43.06, 141.35)
    assert budget.value == 45

    with pytest.raises(RateLimitedError):
        service.isochrone({"lat": "43.06", "lon": "141.35", "distance": "30"}, "ip")


def test_nearby_retries_dedups_and_prefers_city_address():
    results = [
        PointOfInterest(id="a", name="A", rating=4.9, rating_count=10, address="北海道札幌市"),
        PointOfInterest(id="b", name="B", rating=4.0, rating_count=10, address="北海道小樽市"),
        PointOfInterest(id="a", name="A", rating=4.9, rating_count=10, address="北海道札幌市"),
        PointOfInterest(id="c", name="C", rating=4.5, rating_count=10, address="北海道小樽市"),
    ]
    places = FakePlaces(nearby_results=results, fail_first_nearby=True)
    service = make_service(places=places)
    params = {
        "cityId": "01203",
        "cityName": "小樽市",
        "center": {"lat": 43.19, "lon": 141.0},
        "types": ["museum", "BAD"],
    }

    payload = service.nearby(params, "ip")

    assert payload["cityId"] == "01203"
    assert [r["placeId"] for r in payload["results"]] == ["c", "b", "a"]
    assert len(places.nearby_calls) == 2
    center, radius, types = places.nearby_calls[-1]
    assert radius == config.SPOT_RADIUS_M
    assert types == ["museum"]

    assert service.nearby(params, "ip") == payload
    assert len(places.nearby_calls) == 2


def test_nearby_rejects_missing_city_or_center():
    service = make_service()
    with pytest.raises(InvalidInputError):
        service.nearby({"center": {"lat": 43.0, "lon": 141.0}}, "ip")
    with pytest.raises(InvalidInputError):
        service.nearby({"cityId": "x", "center": "43,141"}, "ip")


def test_details_sanitizes_and_caches():
    places = FakePlaces()
    service = make_service(places=places)
    with pytest.raises(InvalidInputError):
        service.details("<>", "ip")

    first = service.details("<ChIJabc>", "ip")
    second = service.details("ChIJabc", "ip")

    assert places.details_calls == ["ChIJabc"]
    assert first == second
    assert first["reviewsCount"] == 100
    assert first["reviews"][0]["author"] == "a"
