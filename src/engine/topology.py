"""
Projector - Rail-Lock onto the Network
======================================
Projects a GPS fix onto the nearest registered rail corridor and expresses
it as a kilometric position (PK) with a confidence tier.

Algorithm:
- Every segment of every line is projected with project_onto_segment.
- The globally smallest perpendicular distance wins.
- PK = pk_start + (length of prior segments + t * segment length) / 1000.

Tie-breaking: lines are visited in lexical id order and segments in order;
only a strictly smaller distance replaces the current best. Equal distances
therefore resolve to the lowest line id, then the lowest segment index.

The confidence tier is informational only. Whether a fix matches at all is
decided solely by max_distance_meters: beyond it the Projector answers
NoMatch instead of a low-confidence guess.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

import structlog

from src.core.geo import GeoPoint, project_onto_segment
from src.engine.network import NetworkModel
from src.engine.pk import format_pk

logger = structlog.get_logger(__name__)

DEFAULT_MAX_PROJECTION_DISTANCE = 5000.0  # meters


class ConfidenceTier(Enum):
    """How close a fix lies to the matched corridor."""
    VERY_HIGH = "very_high"   # <= 100 m
    HIGH = "high"             # <= 500 m
    MEDIUM = "medium"         # <= 1000 m
    LOW = "low"               # <= 2000 m
    VERY_LOW = "very_low"

    @classmethod
    def from_distance(cls, distance_meters: float) -> "ConfidenceTier":
        if distance_meters <= 100:
            return cls.VERY_HIGH
        if distance_meters <= 500:
            return cls.HIGH
        if distance_meters <= 1000:
            return cls.MEDIUM
        if distance_meters <= 2000:
            return cls.LOW
        return cls.VERY_LOW


@dataclass(frozen=True)
class ProjectionResult:
    """
    Position of a fix along a rail corridor.

    Computed per query, never persisted.
    """
    line_id: str
    line_name: str
    pk: float  # km
    perpendicular_distance_meters: float
    segment_index: int
    t: float  # position within the segment, [0, 1]
    confidence_tier: ConfidenceTier
    direction: str

    @property
    def pk_text(self) -> str:
        return format_pk(self.pk)

    def to_record(self) -> Dict[str, Any]:
        """Record shape expected by the persistence and notification collaborators."""
        return {
            'pk': self.pk_text,
            'lineId': self.line_id,
            'lineName': self.line_name,
            'confidenceTier': self.confidence_tier.value,
            'distanceMeters': round(self.perpendicular_distance_meters, 1),
        }


@dataclass(frozen=True)
class NoMatch:
    """No corridor lies within the requested search radius."""
    max_distance_meters: float
    nearest_distance_meters: Optional[float] = None  # None when the network is empty

    def __bool__(self) -> bool:
        return False


ProjectionOutcome = Union[ProjectionResult, NoMatch]


class Projector:
    """
    Map-matching of GPS fixes onto the rail network.

    Usage:
        projector = Projector(network)
        result = projector.project(GeoPoint(longitude=2.35, latitude=48.85))
        if isinstance(result, ProjectionResult):
            print(result.pk_text, result.confidence_tier.value)
    """

    def __init__(
        self,
        network: NetworkModel,
        max_distance_meters: float = DEFAULT_MAX_PROJECTION_DISTANCE
    ) -> None:
        """
        Initialize the Projector.

        Args:
            network: Registry of rail lines to match against.
            max_distance_meters: Default search radius when a call gives none.
        """
        self.network = network
        self.max_distance_meters = max_distance_meters

    def project(
        self,
        point: GeoPoint,
        max_distance_meters: Optional[float] = None
    ) -> ProjectionOutcome:
        """
        Project a GPS fix onto the nearest registered line.

        Args:
            point: GPS fix.
            max_distance_meters: Search radius; defaults to the Projector's.

        Returns:
            ProjectionResult, or NoMatch when no line lies within the radius.
        """
        if max_distance_meters is None:
            max_distance_meters = self.max_distance_meters

        # One snapshot for the whole query: concurrent writers can't tear it
        lines = self.network.snapshot()

        best_line = None
        best_segment = -1
        best_t = 0.0
        min_distance = math.inf

        for line_id in sorted(lines):
            line = lines[line_id]
            vertices = line.vertices
            for i in range(line.segment_count):
                projection = project_onto_segment(point, vertices[i], vertices[i + 1])
                if projection.perpendicular_distance_meters < min_distance:
                    min_distance = projection.perpendicular_distance_meters
                    best_line = line
                    best_segment = i
                    best_t = projection.t

        if best_line is None or min_distance > max_distance_meters:
            logger.debug(
                "projection_no_match",
                lon=point.longitude,
                lat=point.latitude,
                nearest_distance=None if best_line is None else min_distance,
                max_distance=max_distance_meters
            )
            return NoMatch(
                max_distance_meters=max_distance_meters,
                nearest_distance_meters=None if best_line is None else min_distance
            )

        along = (best_line.cumulative_lengths[best_segment] +
                 best_t * best_line.segment_lengths[best_segment])
        # Declared range may be shorter than the drawn geometry
        pk = min(best_line.pk_start + along / 1000.0, best_line.pk_end)

        result = ProjectionResult(
            line_id=best_line.id,
            line_name=best_line.name,
            pk=pk,
            perpendicular_distance_meters=min_distance,
            segment_index=best_segment,
            t=best_t,
            confidence_tier=ConfidenceTier.from_distance(min_distance),
            direction=best_line.direction
        )

        logger.debug(
            "projection_success",
            line_id=result.line_id,
            pk=result.pk_text,
            segment=result.segment_index,
            distance=result.perpendicular_distance_meters,
            confidence=result.confidence_tier.value
        )
        return result


def confidence_tier(distance_meters: float) -> ConfidenceTier:
    """Tier for a perpendicular distance in meters."""
    return ConfidenceTier.from_distance(distance_meters)
