"""
Geometry for proximity queries: haversine distance and bounding-box pre-filter.
"""
import math
from typing import NamedTuple

from src.errors import InvalidArgument

# Mean Earth radius in meters (spherical model, not WGS84 ellipsoid)
EARTH_RADIUS_M = 6371000.0
# 1 deg latitude ~ 111.32 km
METERS_PER_DEGREE = 111320.0
# 111320 m/deg is ~0.11% longer than a degree on the sphere above; widen the box to stay a superset
BBOX_MARGIN = 1.01
# Used when cos(lat) is exactly zero
POLE_COS_FLOOR = 1e-9

LAT_MIN, LAT_MAX = -90.0, 90.0
LNG_MIN, LNG_MAX = -180.0, 180.0


class GeoPoint(NamedTuple):
    lat: float
    lng: float


class BoundingBox(NamedTuple):
    """
    Rectangular pre-filter around a query center, in degrees.

    Longitudes are left unwrapped, so min_lng / max_lng may fall outside
    [-180, 180] near the antimeridian. Use lng_ranges() to get the wrapped
    ranges a storage query should match.
    """

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def reaches_pole(self) -> bool:
        return self.max_lat >= LAT_MAX or self.min_lat <= LAT_MIN

    def lng_ranges(self) -> list[tuple[float, float]]:
        """One or two (lo, hi) longitude ranges inside [-180, 180]."""
        if self.reaches_pole() or self.max_lng - self.min_lng >= 360.0:
            return [(LNG_MIN, LNG_MAX)]
        lo, hi = self.min_lng, self.max_lng
        if lo < LNG_MIN:
            return [(lo + 360.0, LNG_MAX), (LNG_MIN, hi)]
        if hi > LNG_MAX:
            return [(lo, LNG_MAX), (LNG_MIN, hi - 360.0)]
        return [(lo, hi)]

    def contains(self, point: GeoPoint) -> bool:
        if not (self.min_lat <= point.lat <= self.max_lat):
            return False
        return any(lo <= point.lng <= hi for lo, hi in self.lng_ranges())


def validate_point(point: GeoPoint) -> None:
    """Raise InvalidArgument unless lat/lng are finite and within range."""
    if not (math.isfinite(point.lat) and math.isfinite(point.lng)):
        raise InvalidArgument("lat and lng must be finite numbers")
    if not (LAT_MIN <= point.lat <= LAT_MAX):
        raise InvalidArgument(f"lat must be between {LAT_MIN} and {LAT_MAX}")
    if not (LNG_MIN <= point.lng <= LNG_MAX):
        raise InvalidArgument(f"lng must be between {LNG_MIN} and {LNG_MAX}")


def haversine_distance_m(a: GeoPoint, b: GeoPoint) -> float:
    """
    Return great-circle distance between two points in meters.
    Arguments in degrees.
    """
    lat1_rad = math.radians(a.lat)
    lat2_rad = math.radians(b.lat)
    dlat = math.radians(b.lat - a.lat)
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlng / 2) ** 2
    # Rounding can push h just past 1 for near-antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(h))


def compute_bounding_box(center: GeoPoint, radius_m: float) -> BoundingBox:
    """
    Box around center covering every point within radius_m meters.

    The longitude half-width is the larger of r / (111320 * cos(lat)) and the
    exact great-circle extent asin(sin(r/R) / cos(lat)); the linear form is
    too narrow for large radii. When the circle covers a pole the half-width
    is at least 180 degrees and lng_ranges() collapses it to [-180, 180].
    """
    cos_lat = math.cos(math.radians(center.lat))
    if cos_lat == 0:
        cos_lat = POLE_COS_FLOOR
    dlat = radius_m / METERS_PER_DEGREE * BBOX_MARGIN
    dlng = radius_m / (METERS_PER_DEGREE * cos_lat) * BBOX_MARGIN
    angular = radius_m / EARTH_RADIUS_M
    if angular >= math.pi / 2 or math.sin(angular) >= cos_lat:
        dlng = max(dlng, 180.0)
    else:
        exact = math.degrees(math.asin(math.sin(angular) / cos_lat))
        dlng = max(dlng, exact * BBOX_MARGIN)
    return BoundingBox(
        min_lat=center.lat - dlat,
        max_lat=center.lat + dlat,
        min_lng=center.lng - dlng,
        max_lng=center.lng + dlng,
    )
