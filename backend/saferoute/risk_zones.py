"""
위험 구간 탐지
- 경로를 촘촘히 샘플링해 지점별 가중 위험 밀도 계산
- 임계값 초과 연속 구간 → RiskZone, 가까운 구간은 병합
"""

import logging
from typing import List, Sequence

import numpy as np

from . import geo
from .config import ScoringConfig
from .corridor import WeightedHazard
from .models import RiskZone

logger = logging.getLogger(__name__)


class _Run:
    __slots__ = ("start", "end", "members", "peak")

    def __init__(self, start: float, end: float, members: set, peak: float):
        self.start = start
        self.end = end
        self.members = members
        self.peak = peak


def _hazardous_runs(hazardous: np.ndarray) -> List[tuple]:
    """True 가 연속된 (시작, 끝) 인덱스 쌍"""
    runs = []
    start = None
    for i, flag in enumerate(hazardous):
        if flag and start is None:
            start = i
        elif not flag and start is not None:
            runs.append((start, i - 1))
            start = None
    if start is not None:
        runs.append((start, len(hazardous) - 1))
    return runs


def _member_offset(projected: float, run_dist: np.ndarray, run_offsets: np.ndarray, lo: float, hi: float) -> float:
    """
    Route offset used to place a hazard inside one run.

    The global projection wins when it falls on this stretch; otherwise (the
    route passes the hazard again elsewhere) the nearest sample of the run.
    """
    if lo <= projected <= hi:
        return projected
    return float(run_offsets[int(np.argmin(run_dist))])


def detect_risk_zones(geometry, hazards: Sequence[WeightedHazard], config: ScoringConfig) -> List[RiskZone]:
    """
    위험 구간 목록 (경로 진행 순서, 겹치지 않음)

    A zone covers its hazardous samples and the route offsets of every
    hazard that contributed to them.
    """
    if not hazards:
        return []

    poly = geo.as_polyline(geometry)
    cum = geo.cumulative_offsets(poly)
    samples, offsets = geo.sample_polyline(poly, config.zone_sample_spacing_m)

    lats = np.array([h.report.lat for h in hazards])
    lons = np.array([h.report.lon for h in hazards])
    weights = np.array([h.weight for h in hazards])

    # (samples x hazards) distance matrix
    dist = geo.haversine_array(samples[:, 0:1], samples[:, 1:2], lats[None, :], lons[None, :])
    near = dist <= config.zone_radius_m
    density = (near * weights[None, :]).sum(axis=1)
    hazardous = density > config.zone_density_threshold

    runs = []
    for first, last in _hazardous_runs(hazardous):
        members = set(np.nonzero(near[first:last + 1].any(axis=0))[0].tolist())
        lo, hi = float(offsets[first]), float(offsets[last])
        at = [_member_offset(hazards[m].offset_m, dist[first:last + 1, m], offsets[first:last + 1],
                             lo - config.zone_sample_spacing_m, hi + config.zone_sample_spacing_m)
              for m in members]
        start = min([lo] + at)
        end = max([hi] + at)
        runs.append(_Run(float(start), float(end), members, float(density[first:last + 1].max())))

    runs.sort(key=lambda r: r.start)
    merged: List[_Run] = []
    for run in runs:
        if merged and run.start - merged[-1].end < config.zone_min_merge_gap_m:
            prev = merged[-1]
            prev.end = max(prev.end, run.end)
            prev.members |= run.members
            prev.peak = max(prev.peak, run.peak)
        else:
            merged.append(run)

    zones = []
    for run in merged:
        contributing = [hazards[m].report for m in run.members]
        start_point, start_seg = geo.point_at_offset(poly, cum, run.start)
        end_point, end_seg = geo.point_at_offset(poly, cum, run.end)
        zones.append(RiskZone(
            start_offset_m=run.start,
            end_offset_m=run.end,
            start_index=start_seg,
            end_index=min(end_seg + 1, len(poly) - 1),
            start=start_point,
            end=end_point,
            severity=max((r.severity for r in contributing), key=lambda s: s.rank),
            hazard_ids=tuple(sorted(r.id for r in contributing)),
            peak_density=run.peak,
        ))
    logger.debug(f"Detected {len(zones)} risk zones from {len(hazards)} corridor hazards")
    return zones
