"""
외부 경로 제공자 (OSRM)
- 출발/도착 좌표 → 후보 경로 목록 (GeoJSON 좌표 → (lat, lon))
- 타임아웃/연결 실패/5xx → UpstreamUnavailable
"""

import logging
from typing import List, Optional, Protocol, Sequence

import requests

from .config import OSRM_BASE_URL, OSRM_PROFILE, OSRM_TIMEOUT_SECONDS
from .errors import UpstreamUnavailable, ValidationError
from .geo import validate_coordinate
from .models import RouteCandidate, RoutePreferences

logger = logging.getLogger(__name__)


class RoutingProvider(Protocol):
    def fetch_candidates(self, origin: Sequence[float], destination: Sequence[float],
                         preferences: RoutePreferences) -> List[RouteCandidate]:
        ...


def _route_classes(route: dict) -> set:
    """OSRM step intersection classes (toll, motorway, ferry, ...)"""
    classes = set()
    for leg in route.get("legs", []):
        for step in leg.get("steps", []):
            for intersection in step.get("intersections", []):
                classes.update(intersection.get("classes", []))
    return classes


def parse_osrm_routes(payload: dict) -> List[RouteCandidate]:
    candidates = []
    for route in payload.get("routes", []):
        coords = route.get("geometry", {}).get("coordinates", [])
        geometry = tuple((lat, lon) for lon, lat in coords)
        if len(geometry) < 2:
            logger.warning("Skipping OSRM route with fewer than 2 points")
            continue
        classes = _route_classes(route)
        candidates.append(RouteCandidate(
            geometry=geometry,
            distance_m=float(route.get("distance", 0.0)),
            duration_s=float(route.get("duration", 0.0)),
            has_tolls="toll" in classes,
            has_highways="motorway" in classes,
            summary=" / ".join(leg.get("summary", "") for leg in route.get("legs", []) if leg.get("summary")),
        ))
    return candidates


class OsrmRoutingProvider:
    """OSRM route service client; one request returns the main route plus alternatives."""

    def __init__(self, base_url: str = OSRM_BASE_URL, profile: str = OSRM_PROFILE,
                 timeout: float = OSRM_TIMEOUT_SECONDS, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_candidates(self, origin, destination, preferences: RoutePreferences) -> List[RouteCandidate]:
        o_lat, o_lon = validate_coordinate(origin[0], origin[1])
        d_lat, d_lon = validate_coordinate(destination[0], destination[1])
        url = f"{self.base_url}/route/v1/{self.profile}/{o_lon},{o_lat};{d_lon},{d_lat}"
        params = {
            "alternatives": "true",
            "overview": "full",
            "geometries": "geojson",
            "steps": "true",
        }

        try:
            res = self.session.get(url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise UpstreamUnavailable(f"Routing provider timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"Routing provider unreachable: {e}") from e

        if res.status_code >= 500 or res.status_code == 429:
            raise UpstreamUnavailable(f"Routing provider error: HTTP {res.status_code}")

        try:
            payload = res.json()
        except ValueError as e:
            raise UpstreamUnavailable("Routing provider returned invalid JSON") from e

        code = payload.get("code", "Ok")
        if code in ("NoRoute", "NoSegment"):
            logger.info(f"OSRM found no route: {code}")
            return []
        if code in ("InvalidQuery", "InvalidInput", "InvalidValue", "InvalidOptions"):
            raise ValidationError(f"Routing provider rejected the request: {payload.get('message', code)}")
        if code != "Ok":
            raise UpstreamUnavailable(f"Routing provider error: {code} {payload.get('message', '')}".strip())

        candidates = parse_osrm_routes(payload)
        logger.info(f"OSRM returned {len(candidates)} candidate(s)")
        return candidates
