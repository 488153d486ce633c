"""Tests for the proximity ranking pipeline and QR-scoped listing."""
import math

import pytest

from src.data.geo import EARTH_RADIUS_M, BoundingBox, GeoPoint
from src.data.posts_repo import PostRecord
from src.errors import InvalidArgument, StorageUnavailable
from src.posts.service import (
    MAX_CANDIDATES,
    MAX_LIMIT,
    clamp_limit,
    create_post,
    find_by_qr_payload,
    find_near,
    record_scan,
)

TOKYO_STATION = GeoPoint(35.681236, 139.767125)


def _post(post_id: str, lat: float, lng: float) -> PostRecord:
    return PostRecord(
        id=post_id,
        type="text",
        title=None,
        description=None,
        lat=lat,
        lng=lng,
        media_url=None,
        thumb_url=None,
        size=None,
        content_type=None,
        original_name=None,
        created_by=None,
        scan_id=None,
        created_at="2025-01-01 00:00:00",
    )


def _north_of(center: GeoPoint, post_id: str, meters: float) -> PostRecord:
    return _post(post_id, center.lat + math.degrees(meters / EARTH_RADIUS_M), center.lng)


def _box_source(posts: list[PostRecord]):
    """Candidate source that behaves like the SQLite bounding-box query."""

    def source(box: BoundingBox, max_rows: int) -> list[PostRecord]:
        return [p for p in posts if box.contains(GeoPoint(p.lat, p.lng))][:max_rows]

    return source


def _unfiltered_source(posts: list[PostRecord]):
    def source(box: BoundingBox, max_rows: int) -> list[PostRecord]:
        return list(posts)

    return source


TOKYO_POSTS = [
    _north_of(TOKYO_STATION, "far", 500),
    _north_of(TOKYO_STATION, "mid", 150),
    _north_of(TOKYO_STATION, "here", 0),
]


def test_tokyo_station_returns_posts_within_radius_nearest_first():
    results = find_near(TOKYO_STATION, 200, 50, _box_source(TOKYO_POSTS))
    assert [r.post.id for r in results] == ["here", "mid"]
    assert results[0].distance_m == pytest.approx(0.0, abs=1e-6)
    assert results[1].distance_m == pytest.approx(150.0, abs=1e-3)


def test_exact_filter_applies_even_if_source_ignores_box():
    results = find_near(TOKYO_STATION, 200, 50, _unfiltered_source(TOKYO_POSTS))
    assert [r.post.id for r in results] == ["here", "mid"]


def test_results_sorted_ascending_by_distance():
    posts = [_north_of(TOKYO_STATION, f"p{m}", m) for m in (90, 10, 170, 50, 130)]
    results = find_near(TOKYO_STATION, 200, 50, _box_source(posts))
    distances = [r.distance_m for r in results]
    assert distances == sorted(distances)
    assert [r.post.id for r in results] == ["p10", "p50", "p90", "p130", "p170"]


def test_ties_keep_source_order():
    posts = [_north_of(TOKYO_STATION, pid, 40) for pid in ("newest", "middle", "oldest")]
    results = find_near(TOKYO_STATION, 200, 50, _box_source(posts))
    assert [r.post.id for r in results] == ["newest", "middle", "oldest"]


def test_post_on_radius_edge_included():
    posts = [_north_of(TOKYO_STATION, "edge", 199.9)]
    results = find_near(TOKYO_STATION, 200, 50, _box_source(posts))
    assert [r.post.id for r in results] == ["edge"]


def test_limit_truncates():
    posts = [_north_of(TOKYO_STATION, f"p{m}", m) for m in range(0, 100, 10)]
    results = find_near(TOKYO_STATION, 200, 3, _box_source(posts))
    assert [r.post.id for r in results] == ["p0", "p10", "p20"]


def test_limit_clamped_to_max():
    posts = [_north_of(TOKYO_STATION, f"p{i}", i * 0.1) for i in range(400)]
    results = find_near(TOKYO_STATION, 200, 500, _box_source(posts))
    assert len(results) == MAX_LIMIT


def test_candidate_count_capped():
    seen = {}
    far_first = [_north_of(TOKYO_STATION, f"old{i}", 100) for i in range(MAX_CANDIDATES)]
    close_last = [_north_of(TOKYO_STATION, f"new{i}", 0) for i in range(100)]

    def source(box: BoundingBox, max_rows: int) -> list[PostRecord]:
        seen["max_rows"] = max_rows
        return far_first + close_last

    results = find_near(TOKYO_STATION, 200, 200, source)
    assert seen["max_rows"] == MAX_CANDIDATES
    assert all(r.post.id.startswith("old") for r in results)


def test_empty_source_gives_empty_result():
    assert find_near(TOKYO_STATION, 200, 50, _box_source([])) == []


@pytest.mark.parametrize(
    "center, radius_m, limit",
    [
        (GeoPoint(math.nan, 139.0), 200, 50),
        (GeoPoint(35.0, math.inf), 200, 50),
        (GeoPoint(91.0, 0.0), 200, 50),
        (GeoPoint(0.0, -180.5), 200, 50),
        (TOKYO_STATION, 0, 50),
        (TOKYO_STATION, -10, 50),
        (TOKYO_STATION, math.nan, 50),
        (TOKYO_STATION, 200, 0),
        (TOKYO_STATION, 200, -1),
    ],
)
def test_invalid_arguments_rejected_before_storage(center, radius_m, limit):
    def source(box, max_rows):
        raise AssertionError("storage must not be queried")

    with pytest.raises(InvalidArgument):
        find_near(center, radius_m, limit, source)


def test_storage_failure_propagates():
    def source(box, max_rows):
        raise StorageUnavailable("db locked")

    with pytest.raises(StorageUnavailable):
        find_near(TOKYO_STATION, 200, 50, source)


def test_clamp_limit():
    assert clamp_limit(1) == 1
    assert clamp_limit(50) == 50
    assert clamp_limit(200) == 200
    assert clamp_limit(500) == MAX_LIMIT
    with pytest.raises(InvalidArgument):
        clamp_limit(0)


def test_find_by_qr_payload_clamps_limit():
    calls = []

    def list_by_qr(payload: str, limit: int) -> list[PostRecord]:
        calls.append((payload, limit))
        return []

    assert find_by_qr_payload("ABC123", 1000, list_by_qr) == []
    assert calls == [("ABC123", MAX_LIMIT)]


def test_find_by_qr_payload_requires_payload():
    with pytest.raises(InvalidArgument):
        find_by_qr_payload("", 50, lambda payload, limit: [])


def test_create_post_rejects_unknown_type():
    with pytest.raises(InvalidArgument):
        create_post(lambda **kw: None, post_type="video", lat=35.0, lng=139.0)


def test_create_post_passes_fields_to_storage():
    captured = {}

    def insert(**fields):
        captured.update(fields)
        return _post("new", fields["lat"], fields["lng"])

    rec = create_post(insert, post_type="text", lat=35.0, lng=139.0, title="hello")
    assert rec.id == "new"
    assert captured == {"post_type": "text", "lat": 35.0, "lng": 139.0, "title": "hello"}


def test_record_scan_validates_payload_and_coordinates():
    with pytest.raises(InvalidArgument):
        record_scan(lambda **kw: None, qr_payload="", lat=0.0, lng=0.0)
    with pytest.raises(InvalidArgument):
        record_scan(lambda **kw: None, qr_payload="ABC123", lat=math.inf, lng=0.0)
