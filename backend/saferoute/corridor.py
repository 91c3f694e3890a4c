"""
경로 회랑 위험 요소 가중치 계산
- 심각도 × 신뢰도(투표) × 최신성 × 시간대 × 상태
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .config import ScoringConfig
from .hazard_index import HazardSnapshot
from .models import HazardReport, HazardStatus, HazardType, RoutePreferences, Severity, TimeOfDay

# 심각도 가중치 (high 하나가 low 여러 개보다 우세)
SEVERITY_WEIGHTS = {
    Severity.LOW: 1.0,
    Severity.MEDIUM: 2.0,
    Severity.HIGH: 4.0,
}

# 시간대별 보정 배율 - 조명/감시 관련 유형만 저녁/밤에 증가
TIME_OF_DAY_FACTORS = {
    HazardType.NO_LIGHTING: {TimeOfDay.EVENING: 1.5, TimeOfDay.NIGHT: 2.0},
    HazardType.DARK_AREA: {TimeOfDay.EVENING: 1.5, TimeOfDay.NIGHT: 2.0},
    HazardType.SURVEILLANCE_GAP: {TimeOfDay.EVENING: 1.25, TimeOfDay.NIGHT: 1.5},
    HazardType.ABANDONED_STRUCTURE: {TimeOfDay.NIGHT: 1.25},
    HazardType.ROAD_DEFECT: {},
    HazardType.ACCIDENT_PRONE: {},
    HazardType.OTHER: {},
}

_missing = [m for m in Severity if m not in SEVERITY_WEIGHTS] + [t for t in HazardType if t not in TIME_OF_DAY_FACTORS]
if _missing:
    raise RuntimeError(f"Weighting tables are missing entries for: {_missing}")


@dataclass(frozen=True)
class WeightedHazard:
    report: HazardReport
    weight: float
    distance_m: float
    offset_m: float


def severity_weight(severity: Severity) -> float:
    return SEVERITY_WEIGHTS[severity]


def credibility(upvotes: int, downvotes: int, saturation: float = 10.0) -> float:
    """Saturating vote multiplier in (0.5, 1.5); no votes gives 1.0."""
    return 1.0 + 0.5 * math.tanh((upvotes - downvotes) / saturation)


def recency_decay(age_days: float, config: ScoringConfig) -> float:
    """최신성 감쇠 - 단조 비증가, horizon 이후에도 floor 유지"""
    age_days = max(age_days, 0.0)
    if age_days >= config.recency_horizon_days:
        return config.recency_floor
    return max(config.recency_floor, 0.5 ** (age_days / config.recency_half_life_days))


def time_of_day_factor(hazard_type: HazardType, time_of_day: Optional[TimeOfDay]) -> float:
    if time_of_day is None:
        return 1.0
    return TIME_OF_DAY_FACTORS[hazard_type].get(time_of_day, 1.0)


def status_factor(status: HazardStatus, config: ScoringConfig) -> float:
    if status == HazardStatus.VERIFIED:
        return 1.0
    if status == HazardStatus.PENDING:
        return config.pending_weight
    return 0.0


def hazard_weight(report: HazardReport, preferences: RoutePreferences,
                  as_of: datetime, config: ScoringConfig) -> float:
    age_days = (as_of - report.reference_time).total_seconds() / 86400.0
    return (severity_weight(report.severity)
            * credibility(report.upvotes, report.downvotes, config.vote_saturation)
            * recency_decay(age_days, config)
            * time_of_day_factor(report.type, preferences.time_of_day)
            * status_factor(report.status, config))


def aggregate_corridor(snapshot: HazardSnapshot, geometry, preferences: RoutePreferences,
                       config: ScoringConfig) -> List[WeightedHazard]:
    """
    회랑 내 위험 요소를 가중치와 함께 반환

    Returns:
        경로 진행 순서(offset, id)로 정렬된 WeightedHazard 목록
    """
    hits = snapshot.corridor_hits(geometry, config.corridor_buffer_m, config.corridor_sample_spacing_m)
    weighted = []
    for hit in hits:
        weight = hazard_weight(hit.report, preferences, snapshot.as_of, config)
        if weight > 0:
            weighted.append(WeightedHazard(hit.report, weight, hit.distance_m, hit.offset_m))
    return weighted
