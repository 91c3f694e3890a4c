"""
후보 경로 선택 / 최적화
- 거리/시간 정규화 → 속도 점수, 안전 점수와 가중 합성
- safe: 우회 한도 내에서 합성 점수 최대
- fastest: 최소 소요 시간
- optimize: 우회 한도 초과분을 감점으로 반영
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from .config import ScoringConfig
from .errors import NotFoundError
from .models import RoutePreferences, ScoredRoute

logger = logging.getLogger(__name__)

MODE_SAFE = "safe"
MODE_FASTEST = "fastest"
MODE_OPTIMIZE = "optimize"

_EXACT_TIE = 1e-9


@dataclass(frozen=True)
class RankedRoute:
    route: ScoredRoute
    index: int
    distance_score: float
    duration_score: float
    speed_score: float
    composite_score: float
    detour_percent: float
    within_detour: bool
    penalty: float = 0.0

    @property
    def adjusted_score(self) -> float:
        return self.composite_score - self.penalty


@dataclass(frozen=True)
class SelectionResult:
    mode: str
    chosen: RankedRoute
    ranked: Tuple[RankedRoute, ...]
    eligible_count: int


def relative_score(value: float, best: float) -> float:
    """100 = best in set; ratio to the best otherwise"""
    if value <= 0:
        return 100.0
    return 100.0 * best / value


def _excess_percent(value: float, reference: float) -> float:
    if value <= reference:
        return 0.0
    if reference <= 0:
        return float("inf")
    return 100.0 * (value - reference) / reference


def _fastest_key(r: RankedRoute):
    return (r.route.duration_s, r.route.distance_m, -r.route.safety_score, r.index)


def apply_avoid_filters(routes: Sequence[ScoredRoute], preferences: RoutePreferences) -> List[int]:
    """
    유료도로/고속도로 회피 필터

    Returns the indices that pass; when nothing passes every index is kept.
    """
    keep = list(range(len(routes)))
    if preferences.avoid_tolls:
        passing = [i for i in keep if not routes[i].candidate.has_tolls]
        if passing:
            keep = passing
        else:
            logger.info("avoid_tolls: every candidate uses tolls, keeping all")
    if preferences.avoid_highways:
        passing = [i for i in keep if not routes[i].candidate.has_highways]
        if passing:
            keep = passing
        else:
            logger.info("avoid_highways: every candidate uses highways, keeping all")
    return keep


def rank_routes(routes: Sequence[ScoredRoute], preferences: RoutePreferences,
                config: Optional[ScoringConfig] = None) -> List[RankedRoute]:
    """후보별 정규화 점수, 합성 점수, 우회율 계산 (입력 순서 유지)"""
    config = config or ScoringConfig()
    if not routes:
        raise NotFoundError("No route candidates to rank")

    best_distance = min(r.distance_m for r in routes)
    best_duration = min(r.duration_s for r in routes)
    fastest = min(range(len(routes)), key=lambda i: (routes[i].duration_s, routes[i].distance_m, i))
    ref = routes[fastest]

    w = config.traffic_duration_weight if preferences.avoid_traffic else config.duration_weight
    p = preferences.safety_priority / 100.0

    ranked = []
    for i, route in enumerate(routes):
        distance_score = relative_score(route.distance_m, best_distance)
        duration_score = relative_score(route.duration_s, best_duration)
        speed = w * duration_score + (1 - w) * distance_score
        composite = p * route.safety_score + (1 - p) * speed
        detour = max(_excess_percent(route.distance_m, ref.distance_m),
                     _excess_percent(route.duration_s, ref.duration_s))
        ranked.append(RankedRoute(
            route=route,
            index=i,
            distance_score=distance_score,
            duration_score=duration_score,
            speed_score=speed,
            composite_score=composite,
            detour_percent=detour,
            within_detour=detour <= preferences.max_detour_percent + _EXACT_TIE,
        ))
    return ranked


def _pick_best(pool: Sequence[RankedRoute], tolerance: float) -> RankedRoute:
    top = max(r.adjusted_score for r in pool)
    tied = [r for r in pool if r.adjusted_score >= top - tolerance]
    return max(tied, key=lambda r: (r.route.safety_score, -r.route.duration_s, -r.route.distance_m, -r.index))


def _result(mode: str, chosen: RankedRoute, ranked: Sequence[RankedRoute], eligible: int) -> SelectionResult:
    ordered = sorted(ranked, key=lambda r: (r.index != chosen.index, -r.adjusted_score, r.index))
    return SelectionResult(mode=mode, chosen=chosen, ranked=tuple(ordered), eligible_count=eligible)


def _tolerance(preferences: RoutePreferences, config: ScoringConfig) -> float:
    return config.composite_tie_tolerance if preferences.prefer_safer_streets else _EXACT_TIE


def _rank_all(routes: Sequence[ScoredRoute], preferences: RoutePreferences,
              config: ScoringConfig) -> Tuple[List[RankedRoute], List[int]]:
    """
    전체 후보를 한 번에 순위화 (우회율 기준은 전체 중 최단 시간 후보)

    Returns (ranked, allowed): every candidate ranked against the same
    fastest reference, plus the indices that pass the avoid filters.
    """
    if not routes:
        raise NotFoundError("No route candidates available")
    return rank_routes(routes, preferences, config), apply_avoid_filters(routes, preferences)


def _report(ranked: List[RankedRoute], allowed: List[int]) -> List[RankedRoute]:
    """필터로 제외된 후보도 보고용으로 포함 (within_detour=False)"""
    keep = set(allowed)
    return [r if r.index in keep else replace(r, within_detour=False) for r in ranked]


def select_safe(routes: Sequence[ScoredRoute], preferences: RoutePreferences,
                config: Optional[ScoringConfig] = None) -> SelectionResult:
    config = config or ScoringConfig()
    ranked, allowed = _rank_all(routes, preferences, config)
    eligible = [ranked[i] for i in allowed if ranked[i].within_detour]
    if not eligible:
        # avoid filters left nothing inside the detour bound; the bound wins
        logger.info("safe: no filtered candidate within detour bound, ignoring avoid filters")
        allowed = list(range(len(ranked)))
        eligible = [r for r in ranked if r.within_detour]
    chosen = _pick_best(eligible, _tolerance(preferences, config))
    logger.info(f"safe: picked candidate {chosen.index} (safety={chosen.route.safety_score:.1f}, "
                f"composite={chosen.composite_score:.1f}), {len(eligible)}/{len(routes)} within detour bound")
    return _result(MODE_SAFE, chosen, _report(ranked, allowed), len(eligible))


def select_fastest(routes: Sequence[ScoredRoute], preferences: RoutePreferences,
                   config: Optional[ScoringConfig] = None) -> SelectionResult:
    config = config or ScoringConfig()
    ranked, allowed = _rank_all(routes, preferences, config)
    chosen = min((ranked[i] for i in allowed), key=_fastest_key)
    return _result(MODE_FASTEST, chosen, _report(ranked, allowed), len(allowed))


def select_optimized(routes: Sequence[ScoredRoute], preferences: RoutePreferences,
                     config: Optional[ScoringConfig] = None) -> SelectionResult:
    config = config or ScoringConfig()
    ranked, allowed = _rank_all(routes, preferences, config)
    penalized = []
    for r in ranked:
        overage = max(0.0, r.detour_percent - preferences.max_detour_percent)
        penalized.append(replace(r, penalty=overage * config.detour_penalty_per_percent if overage else 0.0))
    pool = [penalized[i] for i in allowed]

    if preferences.safety_priority == 0:
        # safety ignored: identical to the fastest rule
        chosen = min(pool, key=_fastest_key)
    else:
        chosen = _pick_best(pool, _tolerance(preferences, config))
    return _result(MODE_OPTIMIZE, chosen, _report(penalized, allowed), len(pool))
