from datetime import timedelta

import pandas as pd
import pytest

from saferoute.errors import NotFoundError, UpstreamUnavailable, ValidationError
from saferoute.hazard_index import HazardIndex
from saferoute.models import HazardStatus, HazardType, Severity
from saferoute.store import Base, SqlHazardStore, import_hazards_csv

from conftest import NOW, ORIGIN, offset_point


@pytest.fixture
def db(tmp_path):
    return SqlHazardStore(f"sqlite:///{tmp_path / 'hazards.db'}")


def test_create_and_get(db):
    report = db.create("no_street_light", ORIGIN[0], ORIGIN[1], severity="high",
                       description="  lamp broken  ", address="Main St")

    assert report.status == HazardStatus.PENDING
    assert report.type == HazardType.NO_LIGHTING
    assert len(report.id) == 32

    fetched = db.get(report.id)
    assert fetched.location == pytest.approx(ORIGIN)
    assert fetched.created_at.tzinfo is not None
    details = db.get_details(report.id)
    assert details["description"] == "lamp broken"
    assert details["address"] == "Main St"


def test_create_validation(db):
    with pytest.raises(ValidationError):
        db.create("volcano", *ORIGIN)
    with pytest.raises(ValidationError):
        db.create("pothole", 91.0, 0.0)
    with pytest.raises(ValidationError):
        db.create("pothole", *ORIGIN, severity="extreme")
    with pytest.raises(ValidationError):
        db.create("pothole", *ORIGIN, description="x" * 501)


def test_unknown_id(db):
    with pytest.raises(NotFoundError):
        db.get("missing")
    with pytest.raises(NotFoundError):
        db.vote("missing", upvote=True)
    with pytest.raises(NotFoundError):
        db.update_status("missing", "verified")


def test_status_and_votes(db):
    report = db.create("cctv", *ORIGIN)
    verified = db.update_status(report.id, "verified")
    assert verified.status == HazardStatus.VERIFIED
    assert verified.verified_at is not None

    db.vote(report.id, upvote=True)
    db.vote(report.id, upvote=True)
    voted = db.vote(report.id, upvote=False)
    assert (voted.upvotes, voted.downvotes, voted.net_votes) == (2, 1, 1)

    rejected = db.update_status(report.id, HazardStatus.REJECTED)
    assert rejected.verified_at is None
    assert db.fetch_all() == []


def test_list_filters(db):
    db.create("pothole", *ORIGIN)
    db.create("cctv", *ORIGIN, status="verified")
    db.create("cctv", *ORIGIN)

    assert len(db.list()) == 3
    assert len(db.list(hazard_type="cctv")) == 2
    assert [r.type for r in db.list(status="verified")] == [HazardType.SURVEILLANCE_GAP]
    with pytest.raises(ValidationError):
        db.list(status="archived")


def test_find_nearby_sorted_by_distance(db):
    far = db.create("pothole", *offset_point(*ORIGIN, north_m=800))
    near = db.create("pothole", *offset_point(*ORIGIN, east_m=100))
    db.create("pothole", *offset_point(*ORIGIN, north_m=3000))
    pending = db.create("dark_area", *offset_point(*ORIGIN, north_m=300))

    found = db.find_nearby(*ORIGIN, radius_km=1.0)
    assert [r.id for r in found] == [near.id, pending.id, far.id]
    assert pending.id not in [r.id for r in db.find_nearby(*ORIGIN, radius_km=1.0, include_pending=False)]
    with pytest.raises(ValidationError):
        db.find_nearby(*ORIGIN, radius_km=-1)


def test_store_feeds_index(db):
    db.create("no_street_light", *ORIGIN, status="verified", created_at=NOW - timedelta(days=3))
    db.create("pothole", *ORIGIN)

    snapshot = HazardIndex(db).refresh(now=NOW)

    assert len(snapshot) == 1
    assert snapshot.reports[0].reference_time == NOW - timedelta(days=3)


def test_database_failure_is_upstream_error(db):
    Base.metadata.drop_all(bind=db.engine)
    with pytest.raises(UpstreamUnavailable):
        db.fetch_all()


def test_import_csv(db, tmp_path):
    path = tmp_path / "reports.csv"
    pd.DataFrame({
        "type": ["pothole", "dark_area", "lava", "cctv"],
        "위도": [ORIGIN[0], ORIGIN[0] + 0.001, ORIGIN[0], None],
        "경도": [ORIGIN[1], ORIGIN[1], ORIGIN[1], ORIGIN[1]],
        "severity": ["low", None, "high", "medium"],
    }).to_csv(path, index=False)

    created = import_hazards_csv(db, path, default_status=HazardStatus.VERIFIED, verbose=False)

    assert created == 2
    reports = db.fetch_all()
    assert {r.status for r in reports} == {HazardStatus.VERIFIED}
    assert {r.severity for r in reports} == {Severity.LOW, Severity.MEDIUM}


def test_import_csv_requires_coordinates(db, tmp_path):
    path = tmp_path / "bad.csv"
    pd.DataFrame({"type": ["pothole"], "where": ["here"]}).to_csv(path, index=False)
    with pytest.raises(ValidationError):
        import_hazards_csv(db, path, verbose=False)
    with pytest.raises(FileNotFoundError):
        import_hazards_csv(db, tmp_path / "missing.csv", verbose=False)


def test_statistics_by_type(db):
    assert db.statistics() == {"total": 0, "by_type": []}

    db.create("pothole", *ORIGIN)
    db.create("cctv", *ORIGIN, status="verified")
    db.create("cctv", *ORIGIN)
    rejected = db.create("cctv", *ORIGIN)
    db.update_status(rejected.id, "rejected")

    stats = db.statistics()

    assert stats["total"] == 4
    assert stats["by_type"] == [
        {"type": "cctv", "count": 3, "verified": 1, "pending": 1},
        {"type": "pothole", "count": 1, "verified": 0, "pending": 1},
    ]
