import pytest

from saferoute.config import ScoringConfig
from saferoute.corridor import WeightedHazard
from saferoute.scorer import proximity_factor, raw_influence, safety_score

from conftest import hazard_beside_route

CONFIG = ScoringConfig()


def weighted(hazard_id, weight, distance_m=10.0, offset_m=100.0):
    return WeightedHazard(hazard_beside_route(hazard_id, offset_m, distance_m), weight, distance_m, offset_m)


def test_no_hazards_scores_100():
    assert safety_score([], 1000.0, CONFIG) == 100.0
    assert safety_score([], 0.0, CONFIG) == 100.0


def test_more_hazards_never_raise_the_score():
    base = [weighted("a", 2.0), weighted("b", 1.0, offset_m=400)]
    more = base + [weighted("c", 1.0, offset_m=700)]
    worse = [weighted("a", 4.0), weighted("b", 1.0, offset_m=400)]

    assert safety_score(more, 2000.0, CONFIG) < safety_score(base, 2000.0, CONFIG)
    assert safety_score(worse, 2000.0, CONFIG) < safety_score(base, 2000.0, CONFIG)


def test_closer_hazards_matter_more():
    assert proximity_factor(0, 50) == 1.0
    assert proximity_factor(50, 50) == pytest.approx(0.5)
    near = safety_score([weighted("a", 2.0, distance_m=5)], 1000.0, CONFIG)
    far = safety_score([weighted("a", 2.0, distance_m=150)], 1000.0, CONFIG)
    assert near < far


def test_score_is_length_normalized_with_minimum():
    hazards = [weighted("a", 3.0, distance_m=0)]
    assert raw_influence(hazards, 4000.0, CONFIG) == pytest.approx(0.75)
    # short routes are normalized as if they were one kilometre
    assert raw_influence(hazards, 100.0, CONFIG) == raw_influence(hazards, 1000.0, CONFIG)


def test_score_bounds():
    heavy = [weighted(f"h{i}", 4.0, distance_m=0) for i in range(200)]
    score = safety_score(heavy, 1000.0, CONFIG)
    assert 0.0 <= score < 1.0
