import numpy as np
import pytest

from fieldroute.models.domain import Depot, Waypoint
from fieldroute.services.clustering.kmeans import cluster_waypoints

DEPOT = Depot(id="G1", name="Main garage", latitude=13.75, longitude=100.5)


def _waypoint(wid: str, lat: float, lon: float) -> Waypoint:
    return Waypoint(id=wid, code=wid, site_id=None, site_name=f"Site {wid}", latitude=lat, longitude=lon)


def _two_areas() -> list[Waypoint]:
    north = [_waypoint(f"N{i}", 14.5 + i * 0.001, 100.5 + i * 0.001) for i in range(4)]
    south = [_waypoint(f"S{i}", 13.0 + i * 0.001, 100.5 - i * 0.001) for i in range(4)]
    return north + south


def _ids(groups) -> list[set[str]]:
    return sorted(({w.id for w in group} for group in groups), key=sorted)


def test_fewer_waypoints_than_routes_gives_singletons():
    waypoints = [_waypoint("A", 13.8, 100.6), _waypoint("B", 13.9, 100.7)]

    groups = cluster_waypoints(waypoints, 3, DEPOT)

    assert [[w.id for w in group] for group in groups] == [["A"], ["B"]]


@pytest.mark.parametrize("seeding", ["kmeans++", "farthest"])
def test_separated_areas_end_up_in_separate_groups(seeding):
    groups = cluster_waypoints(_two_areas(), 2, DEPOT, rng=np.random.default_rng(7), seeding=seeding)

    assert _ids(groups) == [{"N0", "N1", "N2", "N3"}, {"S0", "S1", "S2", "S3"}]


def test_every_waypoint_assigned_exactly_once():
    waypoints = [_waypoint(f"W{i}", 13.5 + (i % 5) * 0.1, 100.3 + (i // 5) * 0.1) for i in range(23)]

    groups = cluster_waypoints(waypoints, 4, DEPOT, rng=np.random.default_rng(1))

    assigned = [w.id for group in groups for w in group]
    assert sorted(assigned) == sorted(w.id for w in waypoints)
    assert 1 <= len(groups) <= 4
    assert all(groups)


def test_same_seed_gives_same_groups():
    waypoints = [_waypoint(f"W{i}", 13.5 + (i * 7 % 11) * 0.05, 100.3 + (i * 3 % 13) * 0.05) for i in range(30)]

    first = cluster_waypoints(waypoints, 3, DEPOT, rng=np.random.default_rng(42))
    second = cluster_waypoints(waypoints, 3, DEPOT, rng=np.random.default_rng(42))

    assert _ids(first) == _ids(second)


def test_invalid_route_count():
    with pytest.raises(ValueError):
        cluster_waypoints([_waypoint("A", 13.8, 100.6)], 0, DEPOT)
