import threading
from datetime import timedelta

import pytest

from saferoute.config import ScoringConfig
from saferoute.errors import HazardDataUnavailable, ValidationError
from saferoute.hazard_index import HazardIndex, HazardSnapshot
from saferoute.models import HazardStatus

from conftest import NOW, ORIGIN, InMemoryHazardStore, hazard_beside_route, make_snapshot, offset_point


def test_radius_query_uses_exact_distance():
    near = hazard_beside_route("near", 0, 100)
    far = hazard_beside_route("far", 0, 300)
    snapshot = make_snapshot([near, far])

    assert [r.id for r in snapshot.query_radius(ORIGIN, 0.2)] == ["near"]
    assert {r.id for r in snapshot.query_radius(ORIGIN, 0.35)} == {"near", "far"}
    assert snapshot.query_radius(ORIGIN, 0.05) == []


def test_radius_query_validation():
    snapshot = make_snapshot([])
    assert snapshot.query_radius(ORIGIN, 1.0) == []
    with pytest.raises(ValidationError):
        snapshot.query_radius((95.0, 0.0), 1.0)
    with pytest.raises(ValidationError):
        snapshot.query_radius(ORIGIN, -1)


def test_corridor_query_respects_buffer(route):
    inside = hazard_beside_route("inside", 300, 150)
    outside = hazard_beside_route("outside", 600, 250)
    beyond_end = hazard_beside_route("beyond", 1300, 0)
    snapshot = make_snapshot([inside, outside, beyond_end])

    assert [r.id for r in snapshot.query_corridor(route, 200, 50)] == ["inside"]
    assert snapshot.query_corridor(route, 100, 50) == []


def test_corridor_hits_ordered_along_route(route):
    reports = [hazard_beside_route("c", 900, -20), hazard_beside_route("a", 100, 30), hazard_beside_route("b", 500, 0)]
    hits = make_snapshot(reports).corridor_hits(route, 200, 50)

    assert [h.report.id for h in hits] == ["a", "b", "c"]
    assert hits[0].distance_m == pytest.approx(30.0, abs=0.5)
    assert hits[1].offset_m == pytest.approx(500.0, abs=1.0)


def test_corridor_on_single_point_matches_radius_query():
    reports = [hazard_beside_route(f"h{i}", 0, d) for i, d in enumerate([0, 90, 180, 260, 400])]
    snapshot = make_snapshot(reports)

    corridor = {r.id for r in snapshot.query_corridor([ORIGIN], 250, 50)}
    radius = {r.id for r in snapshot.query_radius(ORIGIN, 0.25)}

    assert corridor <= radius
    assert corridor == {"h0", "h1", "h2"}


def test_corridor_rejects_empty_polyline_and_negative_buffer():
    snapshot = make_snapshot([hazard_beside_route("a", 0, 0)])
    with pytest.raises(ValidationError):
        snapshot.query_corridor([], 200, 50)
    with pytest.raises(ValidationError):
        snapshot.query_corridor([ORIGIN], -5, 50)


def test_duplicate_ids_are_collapsed():
    a = hazard_beside_route("dup", 0, 0)
    b = hazard_beside_route("dup", 10, 0)
    assert len(make_snapshot([a, b])) == 1


def test_refresh_filters_pending_unless_configured():
    reports = [hazard_beside_route("v", 0, 0), hazard_beside_route("p", 0, 0, status=HazardStatus.PENDING),
               hazard_beside_route("r", 0, 0, status=HazardStatus.REJECTED)]
    strict = HazardIndex(InMemoryHazardStore(reports))
    lenient = HazardIndex(InMemoryHazardStore(reports), config=ScoringConfig(include_pending=True))

    assert set(strict.refresh(now=NOW).by_id) == {"v"}
    assert set(lenient.refresh(now=NOW).by_id) == {"v", "p"}


def test_refresh_swaps_snapshot_without_touching_readers(store, index):
    store.add(hazard_beside_route("a", 0, 0))
    first = index.refresh(now=NOW)
    store.add(hazard_beside_route("b", 0, 0))
    second = index.refresh(now=NOW)

    assert set(first.by_id) == {"a"}
    assert set(second.by_id) == {"a", "b"}
    assert second.version == first.version + 1
    assert index.snapshot(now=NOW) is second


def test_failed_refresh_keeps_last_snapshot_as_stale(store, index):
    store.add(hazard_beside_route("a", 0, 0))
    index.refresh(now=NOW)
    store.fail = True

    with pytest.raises(HazardDataUnavailable):
        index.refresh(now=NOW)
    assert index.refresh_safely() is False

    snap = index.snapshot(now=NOW + timedelta(minutes=5))
    assert snap.stale
    assert set(snap.by_id) == {"a"}
    assert index.status()["last_error"]

    store.fail = False
    assert not index.refresh(now=NOW).stale


def test_stale_snapshot_expires(store):
    index = HazardIndex(store, max_snapshot_age_s=3600)
    index.refresh(now=NOW)
    store.fail = True
    index.refresh_safely()

    with pytest.raises(HazardDataUnavailable):
        index.snapshot(now=NOW + timedelta(hours=2))


def test_never_loaded_index(store):
    with pytest.raises(HazardDataUnavailable):
        HazardIndex(store).snapshot()

    neutral = HazardIndex(store, config=ScoringConfig(neutral_on_outage=True)).snapshot(now=NOW)
    assert neutral.degraded and neutral.stale
    assert len(neutral) == 0


def test_store_timeout_is_reported_as_unavailable():
    release = threading.Event()

    class SlowStore(InMemoryHazardStore):
        def fetch_all(self):
            release.wait(2)
            return []

    index = HazardIndex(SlowStore(), store_timeout_s=0.05)
    try:
        with pytest.raises(HazardDataUnavailable, match="did not answer"):
            index.refresh(now=NOW)
    finally:
        release.set()


def test_unexpected_store_error_is_wrapped():
    class BrokenStore(InMemoryHazardStore):
        def fetch_all(self):
            raise RuntimeError("socket closed")

    with pytest.raises(HazardDataUnavailable, match="socket closed"):
        HazardIndex(BrokenStore()).refresh(now=NOW)


def test_snapshot_persistence_round_trip(tmp_path, store):
    store.add(hazard_beside_route("a", 0, 0))
    path = tmp_path / "snap" / "hazards.pkl"
    HazardIndex(store, snapshot_file=str(path)).refresh(now=NOW)
    assert path.exists()

    restored = HazardIndex(InMemoryHazardStore(), snapshot_file=str(path), max_snapshot_age_s=10 ** 9)
    snap = restored.load_snapshot()

    assert snap.stale
    assert set(snap.by_id) == {"a"}
    assert restored.snapshot(now=NOW) is snap


def test_load_snapshot_without_file(store):
    with pytest.raises(FileNotFoundError):
        HazardIndex(store).load_snapshot()


def test_index_query_helpers(store, index, route):
    store.add(hazard_beside_route("a", 500, 10))
    index.refresh(now=NOW)
    lat, lon = offset_point(*ORIGIN, north_m=500)

    assert [r.id for r in index.query_radius((lat, lon), 0.1)] == ["a"]
    assert [r.id for r in index.query_corridor(route, 50)] == ["a"]
    assert index.status()["hazards"] == 1
    assert isinstance(index.snapshot(now=NOW), HazardSnapshot)


def test_hung_store_does_not_pile_up_threads():
    release = threading.Event()

    class HungStore(InMemoryHazardStore):
        def fetch_all(self):
            self.calls += 1
            release.wait(5)
            return []

    store = HungStore()
    index = HazardIndex(store, store_timeout_s=0.05)
    try:
        index.refresh_safely()
        before = threading.active_count()
        results = [index.refresh_safely() for _ in range(10)]

        assert results == [False] * 10
        assert threading.active_count() == before
        assert store.calls == 1
        with pytest.raises(HazardDataUnavailable, match="still running"):
            index.refresh(now=NOW)
    finally:
        release.set()
        index.close()


def test_refresh_after_slow_read_completes(store):
    release = threading.Event()
    answers = []

    class SlowOnceStore(InMemoryHazardStore):
        def fetch_all(self):
            if not answers:
                answers.append(True)
                release.wait(5)
            return super().fetch_all()

    slow = SlowOnceStore([hazard_beside_route("a", 0, 0)])
    index = HazardIndex(slow, store_timeout_s=0.05)
    assert index.refresh_safely() is False
    release.set()
    index._pending_fetch.result(timeout=5)

    assert set(index.refresh(now=NOW).by_id) == {"a"}
    index.close()


def test_status_reports_refresh_time_with_snapshot(store, index):
    assert index.status()["refreshed_at"] is None
    index.refresh(now=NOW)
    status = index.status()
    assert status["refreshed_at"] == NOW.isoformat()
    assert status["version"] == 1
