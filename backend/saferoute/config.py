"""
서비스 설정
- 환경변수 기반 런타임 설정 (DB, OSRM, 갱신 주기)
- 안전 점수 계산 튜닝 상수 (ScoringConfig)
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
MODEL_DIR = PROJECT_ROOT / "models"

SQLALCHEMY_DATABASE_URL = os.getenv("SAFEROUTE_DATABASE_URL", "sqlite:///./hazards.db")
DB_TIMEOUT_SECONDS = float(os.getenv("SAFEROUTE_DB_TIMEOUT", "7"))

OSRM_BASE_URL = os.getenv("OSRM_BASE_URL", "http://router.project-osrm.org")
OSRM_PROFILE = os.getenv("OSRM_PROFILE", "driving")
OSRM_TIMEOUT_SECONDS = float(os.getenv("OSRM_TIMEOUT", "10"))

INDEX_REFRESH_SECONDS = float(os.getenv("SAFEROUTE_INDEX_REFRESH", "60"))
STORE_TIMEOUT_SECONDS = float(os.getenv("SAFEROUTE_STORE_TIMEOUT", "10"))
MAX_SNAPSHOT_AGE_SECONDS = float(os.getenv("SAFEROUTE_MAX_SNAPSHOT_AGE", "3600"))
SNAPSHOT_FILE = os.getenv("SAFEROUTE_SNAPSHOT_FILE", str(MODEL_DIR / "hazard_snapshot.pkl"))

SCORING_WORKERS = int(os.getenv("SAFEROUTE_SCORING_WORKERS", "4"))

CORS_ORIGINS = [o.strip() for o in os.getenv("SAFEROUTE_CORS_ORIGINS", "*").split(",") if o.strip()]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ScoringConfig:
    """Tunable constants for hazard weighting, scoring, zones and selection.

    None of these values are contractual; they are defaults chosen so that a
    single high-severity hazard clearly dominates a handful of low ones.
    """

    # corridor / index
    corridor_buffer_m: float = 200.0
    corridor_sample_spacing_m: float = 50.0
    include_pending: bool = False
    pending_weight: float = 0.5
    neutral_on_outage: bool = False

    # hazard weighting
    vote_saturation: float = 10.0
    recency_half_life_days: float = 180.0
    recency_horizon_days: float = 365.0
    recency_floor: float = 0.35

    # scorer
    distance_scale_m: float = 50.0
    min_normalization_km: float = 1.0
    score_scale: float = 6.0

    # risk zones
    zone_sample_spacing_m: float = 25.0
    zone_radius_m: float = 75.0
    zone_density_threshold: float = 1.0  # strictly exceeded
    zone_min_merge_gap_m: float = 100.0

    # selector
    duration_weight: float = 0.6
    traffic_duration_weight: float = 0.8
    detour_penalty_per_percent: float = 1.0
    composite_tie_tolerance: float = 1.0

    @classmethod
    def from_env(cls) -> "ScoringConfig":
        """SAFEROUTE_<FIELD_NAME> 환경변수로 기본값 덮어쓰기"""
        overrides = {}
        for f in fields(cls):
            key = f"SAFEROUTE_{f.name.upper()}"
            if f.type in (bool, "bool"):
                if os.getenv(key) is not None:
                    overrides[f.name] = _env_bool(key, f.default)
            elif os.getenv(key) is not None:
                overrides[f.name] = float(os.getenv(key))
        return cls(**overrides)
