import math
from datetime import datetime, timezone

import pytest

from saferoute.config import ScoringConfig
from saferoute.errors import NotFoundError, UpstreamUnavailable
from saferoute.geo import EARTH_RADIUS_M
from saferoute.hazard_index import HazardIndex, HazardSnapshot
from saferoute.models import HazardReport, HazardStatus, HazardType, RouteCandidate, ScoredRoute, Severity

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
M_PER_DEG = EARTH_RADIUS_M * math.pi / 180.0

ORIGIN = (37.5000, 127.0000)


def offset_point(lat, lon, north_m=0.0, east_m=0.0):
    """Point shifted by metres on a local flat approximation."""
    return (lat + north_m / M_PER_DEG,
            lon + east_m / (M_PER_DEG * math.cos(math.radians(lat))))


def straight_route(length_m=1000.0, n_points=1000, start=ORIGIN):
    """Northbound polyline along a meridian."""
    step = length_m / (n_points - 1)
    return [offset_point(start[0], start[1], north_m=i * step) for i in range(n_points)]


def make_hazard(hazard_id, lat, lon, hazard_type=HazardType.NO_LIGHTING, severity=Severity.HIGH,
                status=HazardStatus.VERIFIED, created_at=NOW, upvotes=0, downvotes=0):
    return HazardReport(
        id=hazard_id,
        type=hazard_type,
        lat=lat,
        lon=lon,
        severity=severity,
        status=status,
        created_at=created_at,
        upvotes=upvotes,
        downvotes=downvotes,
    )


def hazard_beside_route(hazard_id, along_m, east_m, **kwargs):
    lat, lon = offset_point(ORIGIN[0], ORIGIN[1], north_m=along_m, east_m=east_m)
    return make_hazard(hazard_id, lat, lon, **kwargs)


def make_snapshot(reports, as_of=NOW, version=1):
    return HazardSnapshot(reports, as_of=as_of, version=version)


def scored(duration_s, distance_m=5000.0, safety=50.0, tolls=False, highways=False):
    candidate = RouteCandidate(
        geometry=(ORIGIN, offset_point(ORIGIN[0], ORIGIN[1], north_m=distance_m)),
        distance_m=distance_m,
        duration_s=duration_s,
        has_tolls=tolls,
        has_highways=highways,
    )
    return ScoredRoute(candidate=candidate, safety_score=safety, length_m=distance_m)


class InMemoryHazardStore:
    """Hazard source double; ``fail`` makes every read an outage."""

    def __init__(self, reports=()):
        self.reports = {r.id: r for r in reports}
        self.fail = False
        self.calls = 0

    def add(self, report):
        self.reports[report.id] = report

    def fetch_all(self):
        self.calls += 1
        if self.fail:
            raise UpstreamUnavailable("store down")
        return list(self.reports.values())

    def get(self, hazard_id):
        try:
            return self.reports[hazard_id]
        except KeyError:
            raise NotFoundError(hazard_id)


class FakeProvider:
    def __init__(self, candidates=(), error=None):
        self.candidates = list(candidates)
        self.error = error
        self.requests = []

    def fetch_candidates(self, origin, destination, preferences):
        self.requests.append((origin, destination, preferences))
        if self.error is not None:
            raise self.error
        return list(self.candidates)


@pytest.fixture
def config():
    return ScoringConfig()


@pytest.fixture
def route():
    return straight_route()


@pytest.fixture
def store():
    return InMemoryHazardStore()


@pytest.fixture
def index(store, config):
    return HazardIndex(store, config=config, store_timeout_s=2.0)
