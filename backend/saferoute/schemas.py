"""
API 요청/응답 모델 (pydantic)
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import HazardReport, HazardStatus, HazardType, RiskZone, RoutePreferences, Severity, TimeOfDay
from .route_selector import RankedRoute


class LatLng(BaseModel):
    lat: float
    lng: float

    def as_tuple(self):
        return (self.lat, self.lng)


class PreferencesIn(BaseModel):
    safety_priority: float = 50
    max_detour_percent: float = 20
    avoid_tolls: bool = False
    avoid_highways: bool = False
    avoid_traffic: bool = False
    prefer_safer_streets: bool = False
    time_of_day: Optional[TimeOfDay] = None

    def to_domain(self) -> RoutePreferences:
        return RoutePreferences(
            safety_priority=self.safety_priority,
            max_detour_percent=self.max_detour_percent,
            avoid_tolls=self.avoid_tolls,
            avoid_highways=self.avoid_highways,
            avoid_traffic=self.avoid_traffic,
            prefer_safer_streets=self.prefer_safer_streets,
            time_of_day=self.time_of_day,
        )


class RouteRequest(BaseModel):
    origin: LatLng
    destination: LatLng
    preferences: PreferencesIn = Field(default_factory=PreferencesIn)


class AnalyzeRequest(BaseModel):
    geometry: List[LatLng]
    preferences: PreferencesIn = Field(default_factory=PreferencesIn)
    distance_m: Optional[float] = None
    duration_s: Optional[float] = None


class RiskZoneOut(BaseModel):
    start_index: int
    end_index: int
    start_offset_m: float
    end_offset_m: float
    start: LatLng
    end: LatLng
    severity: Severity
    hazard_ids: List[str]

    @classmethod
    def from_zone(cls, zone: RiskZone) -> "RiskZoneOut":
        return cls(
            start_index=zone.start_index,
            end_index=zone.end_index,
            start_offset_m=round(zone.start_offset_m, 1),
            end_offset_m=round(zone.end_offset_m, 1),
            start=LatLng(lat=zone.start[0], lng=zone.start[1]),
            end=LatLng(lat=zone.end[0], lng=zone.end[1]),
            severity=zone.severity,
            hazard_ids=list(zone.hazard_ids),
        )


class ScoredRouteOut(BaseModel):
    geometry: List[LatLng]
    distance_m: float
    duration_s: float
    safety_score: float
    risk_zones: List[RiskZoneOut]
    hazard_count: int
    speed_score: float
    composite_score: float
    detour_percent: Optional[float]
    within_detour: bool
    summary: str = ""

    @classmethod
    def from_ranked(cls, ranked: RankedRoute) -> "ScoredRouteOut":
        route = ranked.route
        detour = ranked.detour_percent
        return cls(
            geometry=[LatLng(lat=lat, lng=lon) for lat, lon in route.geometry],
            distance_m=route.distance_m,
            duration_s=route.duration_s,
            safety_score=round(route.safety_score, 2),
            risk_zones=[RiskZoneOut.from_zone(z) for z in route.risk_zones],
            hazard_count=route.hazard_count,
            speed_score=round(ranked.speed_score, 2),
            composite_score=round(ranked.adjusted_score, 2),
            detour_percent=round(detour, 2) if detour != float("inf") else None,
            within_detour=ranked.within_detour,
            summary=route.candidate.summary,
        )


class RouteResponse(BaseModel):
    mode: str
    route: ScoredRouteOut
    alternatives: List[ScoredRouteOut]
    eligible_count: int
    stale: bool = False
    degraded: bool = False


class SafetyAnalysisResponse(BaseModel):
    overall_score: float
    risk_zones: List[RiskZoneOut]
    hazard_count: int
    length_m: float
    summary: str
    stale: bool = False
    degraded: bool = False


class HazardCreate(BaseModel):
    type: HazardType
    location: LatLng
    severity: Severity = Severity.MEDIUM
    description: str = Field(default="", max_length=500)
    address: str = ""


class HazardOut(BaseModel):
    id: str
    type: HazardType
    location: LatLng
    severity: Severity
    status: HazardStatus
    upvotes: int
    downvotes: int
    created_at: datetime
    verified_at: Optional[datetime] = None
    description: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def from_report(cls, report: HazardReport, description: Optional[str] = None,
                    address: Optional[str] = None) -> "HazardOut":
        return cls(
            id=report.id,
            type=report.type,
            location=LatLng(lat=report.lat, lng=report.lon),
            severity=report.severity,
            status=report.status,
            upvotes=report.upvotes,
            downvotes=report.downvotes,
            created_at=report.created_at,
            verified_at=report.verified_at,
            description=description,
            address=address,
        )


class HazardList(BaseModel):
    hazards: List[HazardOut]
    count: int


class StatusUpdate(BaseModel):
    status: HazardStatus


class VoteRequest(BaseModel):
    direction: str = Field(pattern="^(up|down)$")


class HazardTypeStats(BaseModel):
    type: HazardType
    count: int
    verified: int
    pending: int


class HazardStatistics(BaseModel):
    total: int
    by_type: List[HazardTypeStats]
