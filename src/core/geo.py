"""
Geo Primitives
==============
Great-circle distances and point-to-segment projection shared by the
Projector, the LinearInterpolator and the FacilityIndex.

Projection model:
- Segment endpoints are mapped into a local equirectangular tangent plane
  centred on the query point (x east, y north, meters).
- The projection parameter t and the perpendicular distance both come from
  the same planar Shapely geometry, so they always agree.
- The mapping is affine in (lon, lat), hence a point interpolated linearly
  in degrees projects back onto exactly the same t.

Accuracy boundary: the tangent plane is a flat-Earth approximation. It is
sound for segments of a few kilometres around the query point; error grows
with segment length and latitude span and is not meant for ellipsoidal
(geodesic) precision.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

import numpy as np
from shapely.geometry import LineString, Point

from src.core.errors import InvalidCoordinate

EARTH_RADIUS_METERS = 6371000.0


@dataclass(frozen=True)
class GeoPoint:
    """WGS84 position in decimal degrees."""
    longitude: float
    latitude: float

    def __post_init__(self) -> None:
        lon, lat = self.longitude, self.latitude
        try:
            valid = (
                math.isfinite(lon) and math.isfinite(lat)
                and -180.0 <= lon <= 180.0
                and -90.0 <= lat <= 90.0
            )
        except TypeError:
            valid = False
        if not valid:
            raise InvalidCoordinate(lon, lat)

    @classmethod
    def from_lonlat(cls, pair: Sequence[float]) -> "GeoPoint":
        """Build a point from a GeoJSON-ordered ``[lon, lat]`` pair."""
        if len(pair) < 2:
            raise InvalidCoordinate(float("nan"), float("nan"))
        return cls(longitude=float(pair[0]), latitude=float(pair[1]))

    def as_lonlat(self) -> Tuple[float, float]:
        return (self.longitude, self.latitude)


@dataclass(frozen=True)
class SegmentProjection:
    """Foot of the perpendicular from a point onto a segment."""
    perpendicular_distance_meters: float
    t: float  # position along the segment, clamped to [0, 1]


def great_circle_distance(a: GeoPoint, b: GeoPoint) -> float:
    """
    Haversine distance between two points in meters.

    Args:
        a: First point.
        b: Second point.

    Returns:
        Distance in meters on a sphere of radius EARTH_RADIUS_METERS.
    """
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    delta_lat = lat2 - lat1
    delta_lon = math.radians(b.longitude - a.longitude)

    h = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1) * math.cos(lat2) * math.sin(delta_lon / 2) ** 2)
    # Rounding can push h a hair above 1 for antipodal points
    h = min(1.0, h)
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(h))


def great_circle_distances(
    point: GeoPoint,
    longitudes: np.ndarray,
    latitudes: np.ndarray
) -> np.ndarray:
    """
    Vectorised haversine from one point to many.

    Args:
        point: Origin.
        longitudes: Array of longitudes in degrees.
        latitudes: Array of latitudes in degrees (same shape).

    Returns:
        Array of distances in meters.
    """
    lat1 = math.radians(point.latitude)
    lat2 = np.radians(latitudes)
    delta_lat = lat2 - lat1
    delta_lon = np.radians(longitudes - point.longitude)

    h = (np.sin(delta_lat / 2) ** 2 +
         math.cos(lat1) * np.cos(lat2) * np.sin(delta_lon / 2) ** 2)
    return 2 * EARTH_RADIUS_METERS * np.arcsin(np.sqrt(np.clip(h, 0.0, 1.0)))


def path_length(vertices: Iterable[GeoPoint]) -> float:
    """Sum of great-circle lengths along a polyline, in meters."""
    total = 0.0
    previous = None
    for vertex in vertices:
        if previous is not None:
            total += great_circle_distance(previous, vertex)
        previous = vertex
    return total


def _wrap_longitude(delta: float) -> float:
    """Bring a longitude (or longitude difference) into [-180, 180]."""
    if delta > 180.0:
        delta -= 360.0
    elif delta < -180.0:
        delta += 360.0
    return delta


def _to_tangent_plane(origin: GeoPoint, delta_lon: float, latitude: float) -> Tuple[float, float]:
    """Map an offset from origin into its equirectangular plane (meters)."""
    x = EARTH_RADIUS_METERS * math.radians(delta_lon) * math.cos(math.radians(origin.latitude))
    y = EARTH_RADIUS_METERS * math.radians(latitude - origin.latitude)
    return x, y


def project_onto_segment(
    point: GeoPoint,
    segment_start: GeoPoint,
    segment_end: GeoPoint
) -> SegmentProjection:
    """
    Project a point onto a segment.

    Both the parametric position t and the perpendicular distance are read
    from the same planar LineString, so they cannot disagree. A projection
    falling before the start or past the end snaps to that endpoint.

    The segment always takes the short way round: its end is placed relative
    to its start, so a segment crossing the antimeridian stays short.

    Args:
        point: Query point.
        segment_start: First vertex of the segment.
        segment_end: Second vertex of the segment.

    Returns:
        SegmentProjection with distance in meters and t in [0, 1].
    """
    start_lon = _wrap_longitude(segment_start.longitude - point.longitude)
    end_lon = start_lon + _wrap_longitude(segment_end.longitude - segment_start.longitude)

    start_xy = _to_tangent_plane(point, start_lon, segment_start.latitude)
    end_xy = _to_tangent_plane(point, end_lon, segment_end.latitude)

    if start_xy == end_xy:
        # Degenerate segment: both vertices coincide
        return SegmentProjection(
            perpendicular_distance_meters=math.hypot(*start_xy),
            t=0.0
        )

    segment = LineString([start_xy, end_xy])
    origin = Point(0.0, 0.0)

    t = segment.project(origin, normalized=True)
    distance = segment.distance(origin)

    return SegmentProjection(
        perpendicular_distance_meters=float(distance),
        t=min(1.0, max(0.0, float(t)))
    )


def interpolate(segment_start: GeoPoint, segment_end: GeoPoint, t: float) -> GeoPoint:
    """Point at fraction t along a segment, linear in degrees the short way round."""
    span_lon = _wrap_longitude(segment_end.longitude - segment_start.longitude)
    return GeoPoint(
        longitude=_wrap_longitude(segment_start.longitude + span_lon * t),
        latitude=segment_start.latitude + (segment_end.latitude - segment_start.latitude) * t
    )
