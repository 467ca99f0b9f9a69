from drivespots.models import (
    CandidateMunicipality,
    CityGroup,
    CivicAnchor,
    Coordinate,
    PointOfInterest,
    RankedMunicipality,
)
from drivespots.pipeline import dedupe_groups


def _group(name, spots, metric=30.0):
    loc = Coordinate(43.0, 142.0)
    city = CandidateMunicipality(id=f"id-{name}", name=name, location=loc)
    return CityGroup(
        municipality=RankedMunicipality(candidate=city, metric=metric),
        anchor=CivicAnchor(loc.lat, loc.lon),
        spots=list(spots),
    )


def _spot(spot_id, address=None):
    return PointOfInterest(id=spot_id, name=spot_id, address=address)


def test_spot_goes_to_municipality_named_in_address():
    a = _group("Asahikawa", [_spot("P1", "Asahikawa, Hokkaido")])
    b = _group("Biei", [_spot("P1", "")])

    removed = dedupe_groups([b, a])

    assert [s.id for s in a.spots] == ["P1"]
    assert b.spots == []
    assert removed == 1


def test_address_from_any_copy_is_used():
    a = _group("Asahikawa", [_spot("P1", None)])
    b = _group("Biei", [_spot("P1", "Biei town")])

    dedupe_groups([a, b])

    assert a.spots == []
    assert [s.id for s in b.spots] == ["P1"]


def test_no_address_keeps_first_group():
    a = _group("Otaru", [_spot("P2")])
    b = _group("Yoichi", [_spot("P2")])
    c = _group("Niki", [_spot("P2")])

    removed = dedupe_groups([a, b, c])

    assert [s.id for s in a.spots] == ["P2"]
    assert b.spots == [] and c.spots == []
    assert removed == 2


def test_unmatched_address_keeps_first_group():
    a = _group("Otaru", [_spot("P3", "Sapporo")])
    b = _group("Yoichi", [_spot("P3", "Sapporo")])

    dedupe_groups([a, b])

    assert [s.id for s in a.spots] == ["P3"]
    assert b.spots == []


def test_spot_ids_unique_across_groups_after_dedup():
    groups = [
        _group("A", [_spot("x", "A"), _spot("y", "B"), _spot("z")]),
        _group("B", [_spot("y", "B"), _spot("z"), _spot("w")]),
    ]
    dedupe_groups(groups)
    ids = [s.id for g in groups for s in g.spots]
    assert len(ids) == len(set(ids)) == 4
