"""
위험 요소 공간 인덱스
- 제보 스냅샷 위에 KD-Tree (단위 구 벡터) 구축
- 반경 질의 / 경로 회랑(corridor) 질의, haversine 으로 최종 확인
- 주기적 갱신: 새 스냅샷을 별도로 만든 뒤 참조만 교체
"""

import logging
import pickle
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree

from . import geo
from .config import MAX_SNAPSHOT_AGE_SECONDS, STORE_TIMEOUT_SECONDS, ScoringConfig
from .errors import HazardDataUnavailable, ValidationError
from .models import HazardReport, HazardStatus

logger = logging.getLogger(__name__)

MIN_SAMPLE_SPACING_M = 1.0


class HazardSource(Protocol):
    def fetch_all(self) -> List[HazardReport]:
        ...

    def get(self, hazard_id: str) -> HazardReport:
        ...


@dataclass(frozen=True)
class CorridorHit:
    report: HazardReport
    distance_m: float
    offset_m: float


def is_eligible(report: HazardReport, include_pending: bool) -> bool:
    if report.status == HazardStatus.VERIFIED:
        return True
    return include_pending and report.status == HazardStatus.PENDING


class HazardSnapshot:
    """Immutable view of the hazard reports eligible for scoring."""

    def __init__(self, reports: Iterable[HazardReport], as_of: datetime,
                 version: int = 0, stale: bool = False, degraded: bool = False):
        unique: Dict[str, HazardReport] = {}
        for report in reports:
            unique[report.id] = report
        self.reports: Tuple[HazardReport, ...] = tuple(sorted(unique.values(), key=lambda r: r.id))
        self.by_id: Dict[str, HazardReport] = {r.id: r for r in self.reports}
        self.as_of = as_of
        self.version = version
        self.stale = stale
        self.degraded = degraded

        self._lats = np.array([r.lat for r in self.reports], dtype=float)
        self._lons = np.array([r.lon for r in self.reports], dtype=float)
        self._tree = cKDTree(geo.to_unit_vectors(self._lats, self._lons)) if self.reports else None

    def __len__(self) -> int:
        return len(self.reports)

    def marked(self, stale: bool) -> "HazardSnapshot":
        """같은 데이터, stale 표시만 다른 스냅샷 (트리는 공유)"""
        clone = object.__new__(HazardSnapshot)
        clone.__dict__.update(self.__dict__)
        clone.stale = stale
        return clone

    def _candidates(self, points: np.ndarray, radius_m: float) -> np.ndarray:
        if self._tree is None or len(points) == 0:
            return np.zeros(0, dtype=int)
        vectors = geo.to_unit_vectors(points[:, 0], points[:, 1])
        # tiny slack on the chord; haversine makes the final call
        hits = self._tree.query_ball_point(vectors, geo.chord_length(radius_m) * (1 + 1e-9) + 1e-12)
        found = set()
        for idx in hits:
            found.update(idx)
        return np.array(sorted(found), dtype=int)

    def query_radius(self, center: Sequence[float], radius_km: float) -> List[HazardReport]:
        lat, lon = geo.validate_coordinate(center[0], center[1])
        if radius_km is None or radius_km < 0:
            raise ValidationError(f"Radius must be non-negative, got {radius_km}")
        radius_m = float(radius_km) * 1000.0
        idx = self._candidates(np.array([[lat, lon]]), radius_m)
        if len(idx) == 0:
            return []
        dist = geo.haversine_array(lat, lon, self._lats[idx], self._lons[idx])
        return [self.reports[i] for i, d in zip(idx, dist) if d <= radius_m]

    def corridor_hits(self, polyline, buffer_m: float, max_spacing_m: float) -> List[CorridorHit]:
        """회랑 내 위험 요소와 경로까지의 거리 / 경로상 위치"""
        if buffer_m is None or buffer_m < 0:
            raise ValidationError(f"Corridor buffer must be non-negative, got {buffer_m}")
        poly = geo.as_polyline(polyline)
        if self._tree is None:
            return []

        spacing = max(min(float(buffer_m), float(max_spacing_m)), MIN_SAMPLE_SPACING_M)
        samples, _ = geo.sample_polyline(poly, spacing)
        idx = self._candidates(samples, buffer_m + spacing / 2.0)

        cum = geo.cumulative_offsets(poly)
        hits = []
        for i in idx:
            report = self.reports[i]
            distance, offset, _ = geo.project_onto_polyline(poly, cum, report.lat, report.lon)
            if distance <= buffer_m:
                hits.append(CorridorHit(report, distance, offset))
        hits.sort(key=lambda h: (h.offset_m, h.report.id))
        return hits

    def query_corridor(self, polyline, buffer_m: float, max_spacing_m: float) -> List[HazardReport]:
        return [hit.report for hit in self.corridor_hits(polyline, buffer_m, max_spacing_m)]


class HazardIndex:
    """
    위험 요소 인덱스 (스냅샷 교체 방식)

    Readers call :meth:`snapshot` once per request and keep using that object;
    :meth:`refresh` builds a complete new snapshot before swapping the
    reference, so no reader ever sees a half-built index.
    """

    def __init__(self, source: HazardSource, config: Optional[ScoringConfig] = None,
                 store_timeout_s: float = STORE_TIMEOUT_SECONDS,
                 max_snapshot_age_s: float = MAX_SNAPSHOT_AGE_SECONDS,
                 snapshot_file: Optional[str] = None):
        self.source = source
        self.config = config or ScoringConfig()
        self.store_timeout_s = store_timeout_s
        self.max_snapshot_age_s = max_snapshot_age_s
        self.snapshot_file = Path(snapshot_file) if snapshot_file else None

        self._current: Optional[Tuple[HazardSnapshot, datetime]] = None
        self._version = 0
        self._refresh_lock = threading.Lock()
        self._fetch_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hazard-fetch")
        self._pending_fetch: Optional[Future] = None
        self.last_error: Optional[str] = None

    # --- refresh ---

    def _fetch(self) -> List[HazardReport]:
        """단일 워커로 스토어 조회 (이전 조회가 아직 끝나지 않았으면 바로 실패)"""
        if self._pending_fetch is not None and not self._pending_fetch.done():
            raise HazardDataUnavailable("Previous hazard store read is still running")
        future = self._fetch_pool.submit(self.source.fetch_all)
        self._pending_fetch = future
        try:
            return future.result(timeout=self.store_timeout_s)
        except FutureTimeout:
            raise HazardDataUnavailable(f"Hazard store did not answer within {self.store_timeout_s}s")
        except HazardDataUnavailable:
            raise
        except Exception as e:
            raise HazardDataUnavailable(f"Hazard store read failed: {e}") from e

    def refresh(self, now: Optional[datetime] = None) -> HazardSnapshot:
        """스토어에서 전체를 읽어 새 스냅샷으로 교체. 실패 시 기존 스냅샷 유지 후 예외 전파."""
        with self._refresh_lock:
            try:
                reports = self._fetch()
            except HazardDataUnavailable as e:
                self.last_error = str(e)
                current = self._current
                if current is not None and not current[0].stale:
                    self._current = (current[0].marked(stale=True), current[1])
                logger.warning(f"Hazard index refresh failed, keeping last snapshot: {e}")
                raise

            as_of = now or datetime.now(timezone.utc)
            include_pending = self.config.include_pending
            eligible = [r for r in reports if is_eligible(r, include_pending)]
            self._version += 1
            snapshot = HazardSnapshot(eligible, as_of=as_of, version=self._version)
            self._current = (snapshot, as_of)
            self.last_error = None
            logger.info(f"Hazard index refreshed: v{snapshot.version}, {len(snapshot)} of {len(reports)} reports eligible")

        if self.snapshot_file is not None:
            try:
                self.save_snapshot(snapshot)
            except OSError as e:
                logger.warning(f"Could not persist hazard snapshot: {e}")
        return snapshot

    def refresh_safely(self) -> bool:
        """Background refresh: failures are logged and reported as False."""
        try:
            self.refresh()
            return True
        except HazardDataUnavailable:
            return False

    def invalidate(self) -> HazardSnapshot:
        return self.refresh()

    def close(self):
        self._fetch_pool.shutdown(wait=False, cancel_futures=True)

    # --- read side ---

    def snapshot(self, now: Optional[datetime] = None) -> HazardSnapshot:
        """현재 스냅샷 (없거나 너무 오래되면 정책에 따라 degraded 또는 예외)"""
        current = self._current
        now = now or datetime.now(timezone.utc)
        if current is not None:
            snap, refreshed_at = current
            age = (now - refreshed_at).total_seconds()
            if not snap.stale or age <= self.max_snapshot_age_s:
                return snap
            reason = f"last good hazard snapshot is {int(age)}s old and the store is unreachable"
        else:
            reason = "hazard index has never been loaded"

        if self.config.neutral_on_outage:
            logger.warning(f"Serving safety-neutral results: {reason}")
            return HazardSnapshot([], as_of=now, version=-1, stale=True, degraded=True)
        raise HazardDataUnavailable(f"Hazard data unavailable: {reason}")

    def query_radius(self, center: Sequence[float], radius_km: float) -> List[HazardReport]:
        return self.snapshot().query_radius(center, radius_km)

    def query_corridor(self, polyline, buffer_m: float) -> List[HazardReport]:
        return self.snapshot().query_corridor(polyline, buffer_m, self.config.corridor_sample_spacing_m)

    def status(self) -> Dict:
        snap, refreshed_at = self._current or (None, None)
        return {
            "loaded": snap is not None,
            "version": snap.version if snap else None,
            "hazards": len(snap) if snap else 0,
            "stale": snap.stale if snap else None,
            "refreshed_at": refreshed_at.isoformat() if refreshed_at else None,
            "last_error": self.last_error,
        }

    # --- persistence ---

    def save_snapshot(self, snapshot: HazardSnapshot):
        """스냅샷 저장 (재시작 시 스토어 장애 대비)"""
        self.snapshot_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.snapshot_file.with_suffix(".tmp")
        with open(tmp, "wb") as f:
            pickle.dump({"reports": list(snapshot.reports), "as_of": snapshot.as_of,
                         "version": snapshot.version}, f)
        tmp.replace(self.snapshot_file)

    def load_snapshot(self) -> HazardSnapshot:
        """저장된 스냅샷 로드 - stale 로 표시되어 최대 허용 나이까지만 사용"""
        if self.snapshot_file is None or not self.snapshot_file.exists():
            raise FileNotFoundError(f"Snapshot file not found: {self.snapshot_file}")
        with open(self.snapshot_file, "rb") as f:
            payload = pickle.load(f)
        with self._refresh_lock:
            snapshot = HazardSnapshot(payload["reports"], as_of=payload["as_of"],
                                      version=payload["version"], stale=True)
            self._current = (snapshot, payload["as_of"])
            self._version = max(self._version, snapshot.version)
        logger.info(f"Loaded hazard snapshot v{snapshot.version} from {self.snapshot_file} ({len(snapshot)} hazards)")
        return snapshot
