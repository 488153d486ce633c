"""
Proximity and QR-scoped post queries.

find_near: bounding box pre-filter from storage, then exact haversine filter,
sort by distance and limit. Storage is injected as a callable so the pipeline
stays a pure read over whatever candidates it is given.
"""
import logging
import math
from typing import Callable, NamedTuple

from src.data.geo import GeoPoint, BoundingBox, compute_bounding_box, haversine_distance_m, validate_point
from src.data.posts_repo import POST_TYPES, PostRecord, ScanRecord
from src.errors import InvalidArgument

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 500
MAX_LIMIT = 200
DEFAULT_RADIUS_M = 200.0
DEFAULT_LIMIT = 50

CandidateSource = Callable[[BoundingBox, int], list[PostRecord]]


class NearbyPost(NamedTuple):
    post: PostRecord
    distance_m: float


def clamp_limit(limit: int) -> int:
    if limit <= 0:
        raise InvalidArgument("limit must be a positive integer")
    return min(limit, MAX_LIMIT)


def _validate_radius(radius_m: float) -> None:
    if not math.isfinite(radius_m) or radius_m <= 0:
        raise InvalidArgument("radius must be a positive finite number of meters")


def find_near(
    center: GeoPoint,
    radius_m: float,
    limit: int,
    candidate_source: CandidateSource,
) -> list[NearbyPost]:
    """
    Posts within radius_m meters of center, nearest first, at most min(limit, 200).
    Ties keep the candidate source's order (newest first).
    """
    validate_point(center)
    _validate_radius(radius_m)
    limit = clamp_limit(limit)

    box = compute_bounding_box(center, radius_m)
    candidates = candidate_source(box, MAX_CANDIDATES)[:MAX_CANDIDATES]

    with_dist: list[NearbyPost] = []
    for post in candidates:
        d = haversine_distance_m(center, GeoPoint(post.lat, post.lng))
        if d <= radius_m:
            with_dist.append(NearbyPost(post=post, distance_m=d))
    with_dist.sort(key=lambda x: x.distance_m)
    logger.debug(
        "telemetry find_near candidates=%s in_radius=%s limit=%s",
        len(candidates),
        len(with_dist),
        limit,
    )
    return with_dist[:limit]


def find_by_qr_payload(
    payload: str,
    limit: int,
    list_by_qr: Callable[[str, int], list[PostRecord]],
) -> list[PostRecord]:
    """Posts linked to scans of payload, newest first. Unknown payload gives []."""
    if not payload:
        raise InvalidArgument("qr is required")
    return list_by_qr(payload, clamp_limit(limit))


def validate_post(post_type: str, lat: float, lng: float) -> None:
    if post_type not in POST_TYPES:
        raise InvalidArgument(f"type must be one of: {', '.join(sorted(POST_TYPES))}")
    validate_point(GeoPoint(lat, lng))


def create_post(
    insert: Callable[..., PostRecord],
    *,
    post_type: str,
    lat: float,
    lng: float,
    **fields,
) -> PostRecord:
    """Validate type and coordinates, then hand the row to storage."""
    validate_post(post_type, lat, lng)
    return insert(post_type=post_type, lat=lat, lng=lng, **fields)


def record_scan(
    insert: Callable[..., ScanRecord],
    *,
    qr_payload: str,
    lat: float,
    lng: float,
    session_id: str | None = None,
    spot_id: str | None = None,
) -> ScanRecord:
    if not qr_payload:
        raise InvalidArgument("qrPayload is required")
    validate_point(GeoPoint(lat, lng))
    return insert(qr_payload=qr_payload, lat=lat, lng=lng, session_id=session_id, spot_id=spot_id)
