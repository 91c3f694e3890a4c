"""
도메인 모델
- HazardReport: 제보된 위험 요소 (코어에서는 읽기 전용)
- RoutePreferences / RouteCandidate / ScoredRoute / RiskZone
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from .errors import ValidationError
from .geo import LatLon, validate_coordinate


class HazardType(str, Enum):
    SURVEILLANCE_GAP = "cctv"
    NO_LIGHTING = "no_street_light"
    ABANDONED_STRUCTURE = "abandoned_house"
    ROAD_DEFECT = "pothole"
    ACCIDENT_PRONE = "accident_prone"
    DARK_AREA = "dark_area"
    OTHER = "other"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


class HazardStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


def parse_enum(enum_cls, value, what: str):
    """문자열/enum 값을 enum으로 변환 (알 수 없는 값은 ValidationError)"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Unknown {what} {value!r}; expected one of: {allowed}")


def _aware(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class HazardReport:
    id: str
    type: HazardType
    lat: float
    lon: float
    severity: Severity
    status: HazardStatus
    created_at: datetime
    upvotes: int = 0
    downvotes: int = 0
    verified_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.id:
            raise ValidationError("Hazard report id is required")
        lat, lon = validate_coordinate(self.lat, self.lon)
        object.__setattr__(self, "lat", lat)
        object.__setattr__(self, "lon", lon)
        object.__setattr__(self, "type", parse_enum(HazardType, self.type, "hazard type"))
        object.__setattr__(self, "severity", parse_enum(Severity, self.severity, "severity"))
        object.__setattr__(self, "status", parse_enum(HazardStatus, self.status, "status"))
        if self.upvotes < 0 or self.downvotes < 0:
            raise ValidationError("Vote counts cannot be negative")
        object.__setattr__(self, "created_at", _aware(self.created_at))
        object.__setattr__(self, "verified_at", _aware(self.verified_at))

    @property
    def location(self) -> LatLon:
        return self.lat, self.lon

    @property
    def net_votes(self) -> int:
        return self.upvotes - self.downvotes

    @property
    def reference_time(self) -> datetime:
        """Recency is measured from verification when known, else creation."""
        return self.verified_at or self.created_at


def _clamp_int(value, low: int, high: int, name: str) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(number):
        raise ValidationError(f"{name} must be finite")
    return int(min(max(round(number), low), high))


@dataclass
class RoutePreferences:
    safety_priority: int = 50
    max_detour_percent: int = 20
    avoid_tolls: bool = False
    avoid_highways: bool = False
    avoid_traffic: bool = False
    prefer_safer_streets: bool = False
    time_of_day: Optional[TimeOfDay] = None

    def __post_init__(self):
        self.safety_priority = _clamp_int(self.safety_priority, 0, 100, "safety_priority")
        self.max_detour_percent = _clamp_int(self.max_detour_percent, 0, 100, "max_detour_percent")
        if self.time_of_day is not None:
            self.time_of_day = parse_enum(TimeOfDay, self.time_of_day, "time of day")


@dataclass(frozen=True)
class RouteCandidate:
    geometry: Tuple[LatLon, ...]
    distance_m: float
    duration_s: float
    has_tolls: bool = False
    has_highways: bool = False
    summary: str = ""

    def __post_init__(self):
        points = tuple(validate_coordinate(p[0], p[1]) for p in self.geometry)
        if len(points) < 2:
            raise ValidationError(f"Route geometry needs at least 2 points, got {len(points)}")
        object.__setattr__(self, "geometry", points)
        for name in ("distance_m", "duration_s"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < 0:
                raise ValidationError(f"{name} must be a non-negative number, got {value}")
            object.__setattr__(self, name, value)


@dataclass(frozen=True)
class RiskZone:
    start_offset_m: float
    end_offset_m: float
    start_index: int
    end_index: int
    start: LatLon
    end: LatLon
    severity: Severity
    hazard_ids: Tuple[str, ...]
    peak_density: float = 0.0

    @property
    def length_m(self) -> float:
        return self.end_offset_m - self.start_offset_m


@dataclass(frozen=True)
class ScoredRoute:
    candidate: RouteCandidate
    safety_score: float
    risk_zones: Tuple[RiskZone, ...] = field(default_factory=tuple)
    hazard_count: int = 0
    length_m: float = 0.0

    @property
    def geometry(self) -> Tuple[LatLon, ...]:
        return self.candidate.geometry

    @property
    def distance_m(self) -> float:
        return self.candidate.distance_m

    @property
    def duration_s(self) -> float:
        return self.candidate.duration_s
