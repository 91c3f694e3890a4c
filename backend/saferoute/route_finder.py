"""
안전 경로 탐색 서비스
- 후보 경로 조회 → 스냅샷 1회 확보 → 후보별 안전 점수/위험 구간 (병렬)
- safe / fastest / optimize 선택, 단일 경로 안전 분석
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from . import geo
from .config import SCORING_WORKERS, ScoringConfig
from .corridor import aggregate_corridor
from .errors import InvariantViolation, NotFoundError, RequestCancelled
from .hazard_index import HazardIndex, HazardSnapshot
from .models import RiskZone, RouteCandidate, RoutePreferences, ScoredRoute, Severity, TimeOfDay
from .risk_zones import detect_risk_zones
from .route_selector import SelectionResult, select_fastest, select_optimized, select_safe
from .routing_provider import RoutingProvider
from .scorer import safety_score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteSelection:
    result: SelectionResult
    stale: bool
    degraded: bool
    snapshot_version: int


@dataclass(frozen=True)
class SafetyAnalysis:
    overall_score: float
    risk_zones: Tuple[RiskZone, ...]
    hazard_count: int
    length_m: float
    summary: str
    stale: bool
    degraded: bool


def score_route(candidate: RouteCandidate, preferences: RoutePreferences,
                snapshot: HazardSnapshot, config: ScoringConfig) -> ScoredRoute:
    """후보 1개에 대한 안전 점수 + 위험 구간"""
    poly = geo.as_polyline(candidate.geometry, min_points=2)
    length_m = geo.polyline_length_m(poly)
    hazards = aggregate_corridor(snapshot, candidate.geometry, preferences, config)
    zones = detect_risk_zones(candidate.geometry, hazards, config)
    resolve_zone_hazards(zones, snapshot)
    return ScoredRoute(
        candidate=candidate,
        safety_score=safety_score(hazards, length_m, config),
        risk_zones=tuple(zones),
        hazard_count=len(hazards),
        length_m=length_m,
    )


def resolve_zone_hazards(zones: Sequence[RiskZone], snapshot: HazardSnapshot):
    """위험 구간의 제보 ID 가 모두 스냅샷에 있는지 확인"""
    for zone in zones:
        missing = [hid for hid in zone.hazard_ids if hid not in snapshot.by_id]
        if missing:
            logger.error(f"Risk zone references hazards absent from snapshot v{snapshot.version}: {missing}")
            raise InvariantViolation(f"Risk zone references unknown hazard ids: {missing}")


def describe_route(scored: ScoredRoute, preferences: RoutePreferences) -> str:
    """규칙 기반 안전 분석 메시지"""
    msgs = []
    tod = preferences.time_of_day
    if tod == TimeOfDay.NIGHT:
        msgs.append("Night-time trip: poorly lit and unmonitored stretches weigh more heavily.")
    elif tod == TimeOfDay.EVENING:
        msgs.append("Evening trip: lighting-related reports count extra.")

    zones = scored.risk_zones
    if not zones:
        msgs.append("No risk zones detected along this route.")
    else:
        worst = max((z.severity for z in zones), key=lambda s: s.rank)
        total = sum(z.length_m for z in zones)
        msgs.append(f"{len(zones)} risk zone(s) covering about {int(round(total))} m, worst severity {worst.value}.")
        if worst == Severity.HIGH:
            msgs.append("Stay alert through the high-severity stretch or consider an alternative.")

    score = scored.safety_score
    if score >= 80:
        msgs.append("Overall this route looks safe.")
    elif score >= 60:
        msgs.append("Overall this route is reasonably safe.")
    else:
        msgs.append("Overall this route passes several reported hazards; take care.")
    return " ".join(msgs)


class SafeRouteService:
    """
    요청 단위 오케스트레이션

    Each request captures one hazard snapshot and uses it for every candidate,
    so a refresh landing mid-request cannot mix two hazard views.
    """

    def __init__(self, provider: RoutingProvider, index: HazardIndex,
                 config: Optional[ScoringConfig] = None, max_workers: int = SCORING_WORKERS):
        self.provider = provider
        self.index = index
        self.config = config or index.config
        self.max_workers = max(1, max_workers)

    def _fetch_candidates(self, origin, destination, preferences: RoutePreferences) -> List[RouteCandidate]:
        geo.validate_coordinate(origin[0], origin[1])
        geo.validate_coordinate(destination[0], destination[1])
        candidates = self.provider.fetch_candidates(origin, destination, preferences)
        if not candidates:
            raise NotFoundError("Routing provider returned no candidate routes")
        return candidates

    def score_candidates(self, candidates: Sequence[RouteCandidate], preferences: RoutePreferences,
                         snapshot: HazardSnapshot,
                         cancel_event: Optional[threading.Event] = None) -> List[ScoredRoute]:
        """후보 경로 병렬 채점 (입력 순서 유지)"""
        def _score(candidate):
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelled("Request cancelled before scoring finished")
            return score_route(candidate, preferences, snapshot, self.config)

        if len(candidates) == 1:
            return [_score(candidates[0])]

        pool = ThreadPoolExecutor(max_workers=min(self.max_workers, len(candidates)))
        futures = [pool.submit(_score, c) for c in candidates]
        try:
            return [f.result() for f in futures]
        except BaseException:
            for f in futures:
                f.cancel()
            raise
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def _select(self, selector, origin, destination, preferences: RoutePreferences,
                cancel_event: Optional[threading.Event]) -> RouteSelection:
        candidates = self._fetch_candidates(origin, destination, preferences)
        snapshot = self.index.snapshot()
        scored = self.score_candidates(candidates, preferences, snapshot, cancel_event)
        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelled("Request cancelled")
        result = selector(scored, preferences, self.config)
        return RouteSelection(result=result, stale=snapshot.stale, degraded=snapshot.degraded,
                              snapshot_version=snapshot.version)

    def compute_safe_route(self, origin, destination, preferences: RoutePreferences,
                           cancel_event: Optional[threading.Event] = None) -> RouteSelection:
        return self._select(select_safe, origin, destination, preferences, cancel_event)

    def compute_fastest_route(self, origin, destination, preferences: RoutePreferences,
                              cancel_event: Optional[threading.Event] = None) -> RouteSelection:
        return self._select(select_fastest, origin, destination, preferences, cancel_event)

    def optimize_route(self, origin, destination, preferences: RoutePreferences,
                       cancel_event: Optional[threading.Event] = None) -> RouteSelection:
        return self._select(select_optimized, origin, destination, preferences, cancel_event)

    def analyze_route(self, geometry, preferences: RoutePreferences,
                      distance_m: Optional[float] = None, duration_s: Optional[float] = None) -> SafetyAnalysis:
        """주어진 폴리라인의 안전 분석"""
        poly = geo.as_polyline(geometry, min_points=2)
        length_m = geo.polyline_length_m(poly)
        candidate = RouteCandidate(
            geometry=tuple(map(tuple, poly.tolist())),
            distance_m=length_m if distance_m is None else distance_m,
            duration_s=0.0 if duration_s is None else duration_s,
        )
        snapshot = self.index.snapshot()
        scored = score_route(candidate, preferences, snapshot, self.config)
        logger.info(f"Analyzed route: {length_m:.0f} m, score {scored.safety_score:.1f}, "
                    f"{len(scored.risk_zones)} zone(s), snapshot v{snapshot.version}")
        return SafetyAnalysis(
            overall_score=scored.safety_score,
            risk_zones=scored.risk_zones,
            hazard_count=scored.hazard_count,
            length_m=length_m,
            summary=describe_route(scored, preferences),
            stale=snapshot.stale,
            degraded=snapshot.degraded,
        )
