from .config import ScoringConfig
from .errors import (HazardDataUnavailable, InvariantViolation, NotFoundError, SafeRouteError,
                     UpstreamUnavailable, ValidationError)
from .models import (HazardReport, HazardStatus, HazardType, RiskZone, RouteCandidate, RoutePreferences,
                     ScoredRoute, Severity, TimeOfDay)
from .hazard_index import HazardIndex, HazardSnapshot
from .corridor import aggregate_corridor, hazard_weight
from .scorer import safety_score
from .risk_zones import detect_risk_zones
from .route_selector import rank_routes, select_fastest, select_optimized, select_safe
from .route_finder import SafeRouteService, score_route

__all__ = [
    "ScoringConfig",
    "SafeRouteError",
    "ValidationError",
    "UpstreamUnavailable",
    "HazardDataUnavailable",
    "NotFoundError",
    "InvariantViolation",
    "HazardReport",
    "HazardStatus",
    "HazardType",
    "Severity",
    "TimeOfDay",
    "RoutePreferences",
    "RouteCandidate",
    "ScoredRoute",
    "RiskZone",
    "HazardIndex",
    "HazardSnapshot",
    "aggregate_corridor",
    "hazard_weight",
    "safety_score",
    "detect_risk_zones",
    "rank_routes",
    "select_safe",
    "select_fastest",
    "select_optimized",
    "SafeRouteService",
    "score_route"
]
