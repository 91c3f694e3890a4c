"""
지리 계산 유틸리티
- haversine 거리 (스칼라 / 벡터)
- 폴리라인 샘플링, 누적 거리
- 점 → 폴리라인 최근접 투영 (거리 + 경로상 위치)
"""

import math
from typing import Iterable, Sequence, Tuple

import numpy as np

from .errors import ValidationError

EARTH_RADIUS_M = 6371000.0

LatLon = Tuple[float, float]


def validate_coordinate(lat: float, lon: float) -> Tuple[float, float]:
    """WGS84 범위 검사 후 float 튜플 반환"""
    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        raise ValidationError(f"Coordinates must be numeric: ({lat!r}, {lon!r})")
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ValidationError(f"Coordinates must be finite: ({lat}, {lon})")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError(f"Latitude out of range [-90, 90]: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise ValidationError(f"Longitude out of range [-180, 180]: {lon}")
    return lat, lon


def as_polyline(points: Iterable[Sequence[float]], min_points: int = 1) -> np.ndarray:
    """(lat, lon) 시퀀스를 검증된 (n, 2) 배열로 변환"""
    validated = [validate_coordinate(p[0], p[1]) for p in points]
    if len(validated) < min_points:
        if not validated:
            raise ValidationError("Polyline is empty")
        raise ValidationError(f"Polyline needs at least {min_points} points, got {len(validated)}")
    return np.asarray(validated, dtype=float)


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dp, dl = math.radians(lat2 - lat1), math.radians(lon2 - lon1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def haversine_array(lat, lon, lats, lons) -> np.ndarray:
    """Great-circle distances (m) from one point, or pairwise, broadcasting numpy-style."""
    lat1, lon1 = np.radians(lat), np.radians(lon)
    lat2, lon2 = np.radians(np.asarray(lats, dtype=float)), np.radians(np.asarray(lons, dtype=float))
    a = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    return 2 * EARTH_RADIUS_M * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def to_unit_vectors(lats, lons) -> np.ndarray:
    """위경도 → 단위 구 위의 3차원 벡터 (KD-Tree용)"""
    phi = np.radians(np.asarray(lats, dtype=float))
    lam = np.radians(np.asarray(lons, dtype=float))
    cos_phi = np.cos(phi)
    return np.column_stack((cos_phi * np.cos(lam), cos_phi * np.sin(lam), np.sin(phi)))


def chord_length(distance_m: float) -> float:
    """Chord on the unit sphere subtending a great-circle arc of ``distance_m``."""
    angle = distance_m / EARTH_RADIUS_M
    if angle >= math.pi:
        return 2.0
    return 2.0 * math.sin(angle / 2.0)


def _wrap_lon_delta(dlon):
    return (dlon + 180.0) % 360.0 - 180.0


def segment_lengths(poly: np.ndarray) -> np.ndarray:
    if len(poly) < 2:
        return np.zeros(0)
    return haversine_array(poly[:-1, 0], poly[:-1, 1], poly[1:, 0], poly[1:, 1])


def cumulative_offsets(poly: np.ndarray) -> np.ndarray:
    """각 꼭짓점까지의 누적 거리 (m), 첫 값은 0"""
    return np.concatenate(([0.0], np.cumsum(segment_lengths(poly))))


def polyline_length_m(poly: np.ndarray) -> float:
    return float(segment_lengths(poly).sum())


def interpolate(poly: np.ndarray, segment: int, t: float) -> LatLon:
    """segment 번째 구간의 비율 t 위치 좌표"""
    if len(poly) == 1:
        return float(poly[0, 0]), float(poly[0, 1])
    a, b = poly[segment], poly[segment + 1]
    lat = a[0] + t * (b[0] - a[0])
    lon = a[1] + t * _wrap_lon_delta(b[1] - a[1])
    return float(lat), float(_wrap_lon_delta(lon))


def sample_polyline(poly: np.ndarray, spacing_m: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    폴리라인을 spacing_m 이하 간격으로 샘플링

    Returns:
        (samples (m, 2), offsets (m,)) - 모든 원래 꼭짓점 포함
    """
    if spacing_m <= 0:
        raise ValidationError(f"Sample spacing must be positive: {spacing_m}")
    if len(poly) == 1:
        return poly.copy(), np.zeros(1)

    seg_len = segment_lengths(poly)
    cum = np.concatenate(([0.0], np.cumsum(seg_len)))
    samples = [poly[:1]]
    offsets = [np.zeros(1)]
    for i, length in enumerate(seg_len):
        n = max(1, int(math.ceil(length / spacing_m)))
        t = np.arange(1, n + 1) / n
        a, b = poly[i], poly[i + 1]
        lats = a[0] + t * (b[0] - a[0])
        lons = _wrap_lon_delta(a[1] + t * _wrap_lon_delta(b[1] - a[1]))
        samples.append(np.column_stack((lats, lons)))
        offsets.append(cum[i] + t * length)
    return np.vstack(samples), np.concatenate(offsets)


def project_onto_polyline(poly: np.ndarray, cum: np.ndarray, lat: float, lon: float) -> Tuple[float, float, int]:
    """
    점을 폴리라인에 투영

    Uses a local equirectangular plane centred on the point to find the nearest
    segment, then measures the final distance with haversine.

    Returns:
        (distance_m, offset_m along the route, segment index)
    """
    if len(poly) == 1:
        return haversine_m(lat, lon, poly[0, 0], poly[0, 1]), 0.0, 0

    cos_lat = math.cos(math.radians(lat))
    x = np.radians(_wrap_lon_delta(poly[:, 1] - lon)) * EARTH_RADIUS_M * cos_lat
    y = np.radians(poly[:, 0] - lat) * EARTH_RADIUS_M
    ax, ay = x[:-1], y[:-1]
    dx, dy = x[1:] - ax, y[1:] - ay
    seg_sq = dx * dx + dy * dy
    with np.errstate(invalid="ignore", divide="ignore"):
        t = np.where(seg_sq > 0, -(ax * dx + ay * dy) / seg_sq, 0.0)
    t = np.clip(t, 0.0, 1.0)
    px, py = ax + t * dx, ay + t * dy
    best = int(np.argmin(px * px + py * py))

    t_best = float(t[best])
    near_lat, near_lon = interpolate(poly, best, t_best)
    distance = haversine_m(lat, lon, near_lat, near_lon)
    offset = float(cum[best] + t_best * (cum[best + 1] - cum[best]))
    return distance, offset, best


def point_at_offset(poly: np.ndarray, cum: np.ndarray, offset_m: float) -> Tuple[LatLon, int]:
    """경로상 누적 거리 위치의 좌표와 해당 구간 인덱스"""
    if len(poly) == 1:
        return (float(poly[0, 0]), float(poly[0, 1])), 0
    offset_m = min(max(offset_m, 0.0), float(cum[-1]))
    segment = int(np.searchsorted(cum, offset_m, side="right") - 1)
    segment = min(max(segment, 0), len(poly) - 2)
    length = cum[segment + 1] - cum[segment]
    t = (offset_m - cum[segment]) / length if length > 0 else 0.0
    return interpolate(poly, segment, t), segment
