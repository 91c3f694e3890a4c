"""
경로 안전 점수 (0~100, 높을수록 안전)
"""

import math
from typing import Sequence

from .config import ScoringConfig
from .corridor import WeightedHazard


def proximity_factor(distance_m: float, scale_m: float) -> float:
    """Closer hazards matter more: 1.0 on the centerline, 0.5 at ``scale_m``."""
    return 1.0 / (1.0 + max(distance_m, 0.0) / scale_m)


def raw_influence(hazards: Sequence[WeightedHazard], route_length_m: float, config: ScoringConfig) -> float:
    """Distance-weighted hazard influence per kilometre of route."""
    total = sum(h.weight * proximity_factor(h.distance_m, config.distance_scale_m) for h in hazards)
    route_km = max(route_length_m / 1000.0, config.min_normalization_km)
    return total / route_km


def safety_score(hazards: Sequence[WeightedHazard], route_length_m: float, config: ScoringConfig) -> float:
    if not hazards:
        return 100.0
    raw = raw_influence(hazards, route_length_m, config)
    return min(100.0, max(0.0, 100.0 * math.exp(-raw / config.score_scale)))
