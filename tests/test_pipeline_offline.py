import pytest

from drivespots import config
from drivespots.http import UpstreamError
from drivespots.models import Budget, CandidateMunicipality, Coordinate, PointOfInterest, RouteElement
from drivespots.pipeline import (
    discover_candidates,
    resolve_anchor,
    run_discovery,
    search_municipality_spots,
)

SAPPORO = Coordinate(43.06, 141.35)

# name, lat, lon, drive minutes from Sapporo
TOWNS = [
    ("札幌市", 43.06, 141.35, 20),
    ("小樽市", 43.19, 141.00, 50),
    ("江別市", 43.10, 141.54, 46),
    ("石狩市", 43.17, 141.32, 48),
    ("北広島市", 42.98, 141.56, 52),
    ("恵庭市", 42.88, 141.58, 55),
    ("千歳市", 42.82, 141.65, 60),
    ("当別町", 43.22, 141.52, 62),
    ("岩見沢市", 43.20, 141.76, 70),
    ("苫小牧市", 42.63, 141.60, 75),
    ("夕張市", 43.06, 141.97, 90),
]
NO_HALL = {"江別市", "石狩市"}
NO_OFFICE = {"石狩市"}


def _loc(name):
    for n, lat, lon, _ in TOWNS:
        if n == name:
            return Coordinate(lat, lon)
    raise KeyError(name)


def _nearest_town(point):
    return min(TOWNS, key=lambda t: (t[1] - point.lat) ** 2 + (t[2] - point.lon) ** 2)[0]


class FakePlacesClient:
    def __init__(self, fail_municipality_at=None, towns=TOWNS):
        self.fail_municipality_at = fail_municipality_at
        self.towns = towns
        self.calls = []

    def search_nearby(self, center, radius_m, included_types, max_results=20, field_mask=None):
        self.calls.append(("nearby", tuple(included_types), center))
        if included_types == [config.MUNICIPALITY_TYPE]:
            if self.fail_municipality_at is not None and center in self.fail_municipality_at:
                raise UpstreamError(503, "unavailable")
            places = [
                PointOfInterest(id=f"c-{name}", name=name, location=Coordinate(lat, lon))
                for name, lat, lon, _ in self.towns
            ]
            # a second locality record sharing a name must not replace the first
            places.append(PointOfInterest(id="c-dup", name=self.towns[1][0], location=Coordinate(0.0, 0.0)))
            return places
        if list(included_types) == list(config.CIVIC_ANCHOR_NEARBY_TYPES):
            name = _nearest_town(center)
            if name in NO_OFFICE:
                return []
            loc = _loc(name)
            return [PointOfInterest(id=f"o-{name}", name=f"{name}役場", location=Coordinate(loc.lat + 0.002, loc.lon))]
        if included_types == [config.SPOT_TYPE]:
            name = _nearest_town(center)
            return [
                PointOfInterest(id=f"s-{name}", name=f"{name}の名所", address=f"北海道{name}", rating=4.0),
                PointOfInterest(id="shared", name="運河", address="北海道小樽市港町", rating=4.5),
                PointOfInterest(id=f"noname-{name}", name=None),
            ]
        raise AssertionError(f"unexpected nearby types {included_types}")

    def search_text(self, query, included_type=None, page_size=None, field_mask=None):
        self.calls.append(("text", query, included_type))
        name = query.split(" ")[0]
        if name in NO_HALL:
            return []
        loc = _loc(name)
        return [PointOfInterest(id=f"h-{name}", name=f"{name}役所", location=Coordinate(loc.lat + 0.001, loc.lon))]


class FakeRoutingClient:
    def __init__(self, minutes_by_dest=None):
        self.minutes_by_dest = minutes_by_dest or {
            Coordinate(lat, lon): minutes for _, lat, lon, minutes in TOWNS
        }
        self.calls = []

    def distance_matrix(self, origin, destinations):
        assert len(destinations) <= config.ROUTING_MAX_DESTINATIONS
        self.calls.append(list(destinations))
        out = []
        for dest in destinations:
            minutes = self.minutes_by_dest.get(dest)
            if minutes is None:
                out.append(RouteElement(status="NOT_FOUND"))
            else:
                out.append(RouteElement(status="OK", duration_seconds=minutes * 60, distance_meters=minutes * 900))
        return out


def test_pipeline_offline_sapporo_sixty_minutes():
    places = FakePlacesClient()
    result = run_discovery(SAPPORO, Budget.time(60), places, FakeRoutingClient(), max_workers=4)
    data = result.to_dict()
    groups = data["groups"]

    assert len(groups) <= config.MAX_GROUPS
    metrics = [g["city"]["metric"] for g in groups]
    assert metrics == sorted(metrics)
    assert metrics == [46, 48, 50, 52, 55, 60, 62, 70]

    names = [g["city"]["name"] for g in groups]
    assert "苫小牧市" not in names and "札幌市" not in names and "夕張市" not in names
    assert len(set(names)) == len(names)

    spot_ids = [s["id"] for g in groups for s in g["spots"]]
    assert len(spot_ids) == len(set(spot_ids))
    otaru = next(g for g in groups if g["city"]["name"] == "小樽市")
    assert "shared" in [s["id"] for s in otaru["spots"]]
    assert otaru["city"]["id"] == "c-小樽市"
    assert all(s["name"] for g in groups for s in g["spots"])

    assert result.summary["samples"] == 1
    assert result.summary["duplicates_removed"] == 7


def test_anchor_sources():
    places = FakePlacesClient()
    hall = resolve_anchor(CandidateMunicipality("c1", "小樽市", _loc("小樽市")), places)
    office = resolve_anchor(CandidateMunicipality("c2", "江別市", _loc("江別市")), places)
    fallback = resolve_anchor(CandidateMunicipality("c3", "石狩市", _loc("石狩市")), places)

    assert hall.source == "text_search"
    assert hall.lat == pytest.approx(43.191)
    assert office.source == "nearby_search"
    assert office.lat == pytest.approx(43.102)
    assert fallback.source == "fallback"
    assert (fallback.lat, fallback.lon) == (43.17, 141.32)


def test_anchor_falls_back_on_upstream_error():
    class BrokenPlaces:
        def search_text(self, *args, **kwargs):
            raise UpstreamError(500, "down")

    anchor = resolve_anchor(CandidateMunicipality("c", "小樽市", _loc("小樽市")), BrokenPlaces())
    assert anchor.source == "fallback"


def test_failed_samples_are_skipped():
    samples = [SAPPORO, Coordinate(43.5, 141.5)]
    places = FakePlacesClient(fail_municipality_at={SAPPORO})

    found = discover_candidates(samples, places, max_workers=1)

    assert len(found) == len(TOWNS)
    failed_calls = [c for c in places.calls if c[0] == "nearby" and c[2] == SAPPORO]
    assert len(failed_calls) == config.MUNICIPALITY_SEARCH_MAX_ATTEMPTS


def test_all_samples_failing_raises():
    places = FakePlacesClient(fail_municipality_at={SAPPORO})
    with pytest.raises(UpstreamError):
        run_discovery(SAPPORO, Budget.time(60), places, FakeRoutingClient())


def test_first_seen_name_wins_across_samples():
    many = [(f"町{i}", 43.0 + i * 0.001, 141.0, 50) for i in range(30)]
    places = FakePlacesClient(towns=many)
    samples = [Coordinate(43.0 + i, 141.0) for i in range(9)]

    found = discover_candidates(samples, places, max_workers=2)

    # every sample sees the same 30 names, so the first wins and the total is 30
    assert len(found) == 30
    assert found[0].id == "c-町0"


def test_candidate_discovery_stops_once_limit_reached(monkeypatch):
    monkeypatch.setattr(config, "MAX_CANDIDATE_MUNICIPALITIES", 5)
    places = FakePlacesClient()
    found = discover_candidates([SAPPORO, Coordinate(44.0, 142.0)], places, max_workers=1)
    assert len(found) >= 5
    assert len([c for c in places.calls if c[0] == "nearby"]) == 1


def test_municipality_spots_without_origin_returns_named_spots():
    class TextOnly:
        def search_text(self, query, included_type=None, page_size=None, field_mask=None):
            assert query.startswith("小樽市 ")
            assert included_type == config.SPOT_TYPE
            return [
                PointOfInterest(id="a", name="運河", rating=4.1),
                PointOfInterest(id="b", name=None),
            ]

    spots = search_municipality_spots("小樽市", TextOnly())
    assert [s.id for s in spots] == ["a"]


def test_municipality_spots_with_budget_filters_and_sorts():
    class TextOnly:
        def search_text(self, query, included_type=None, page_size=None, field_mask=None):
            return [
                PointOfInterest(id="far", name="遠い", rating=5.0, rating_count=10),
                PointOfInterest(id="low", name="低評価", rating=3.2, rating_count=500),
                PointOfInterest(id="top", name="人気", rating=4.6, rating_count=50),
                PointOfInterest(id="top2", name="人気2", rating=4.6, rating_count=900),
                PointOfInterest(id="norating", name="無評価"),
            ]

    routing = FakeRoutingClient({"far": 200, "low": 50, "top": 55, "top2": 58, "norating": 60})
    spots = search_municipality_spots(
        "小樽市", TextOnly(), routing, origin=SAPPORO, budget=Budget.time(60)
    )

    assert [s.id for s in spots] == ["top2", "top", "low", "norating"]
    assert routing.calls == [["far", "low", "top", "top2", "norating"]]
