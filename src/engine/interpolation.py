"""
Linear Interpolator - PK to Coordinate
======================================
Inverse of the Projector: resolves a (line, PK) pair to a GPS coordinate by
walking the line's segments until the one containing the PK is found.
"""

import structlog

from src.core.errors import LineNotFound, PKOutOfRange
from src.core.geo import GeoPoint, interpolate
from src.engine.network import NetworkModel
from src.engine.pk import parse_pk

logger = structlog.get_logger(__name__)


class LinearInterpolator:
    """
    Coordinate lookup along a rail line.

    Usage:
        interpolator = LinearInterpolator(network)
        point = interpolator.coordinate_at_pk("LIGNE_PARIS_LYON", 123.5)
    """

    def __init__(self, network: NetworkModel) -> None:
        self.network = network

    def coordinate_at_pk(self, line_id: str, pk: float) -> GeoPoint:
        """
        Coordinate of a kilometric position.

        Args:
            line_id: Rail line identifier.
            pk: Kilometric position in km.

        Returns:
            Interpolated GeoPoint on the line.

        Raises:
            LineNotFound: If the line is not registered.
            PKOutOfRange: If pk lies outside [pk_start, pk_end].
        """
        line = self.network.get_line(line_id)
        if line is None:
            raise LineNotFound(line_id)

        if not line.pk_start <= pk <= line.pk_end:
            raise PKOutOfRange(line_id, pk, line.pk_start, line.pk_end)

        offset = (pk - line.pk_start) * 1000.0
        accumulated = 0.0

        for i, segment_length in enumerate(line.segment_lengths):
            if accumulated + segment_length >= offset:
                t = (offset - accumulated) / segment_length if segment_length > 0 else 0.0
                return interpolate(line.vertices[i], line.vertices[i + 1], min(1.0, max(0.0, t)))
            accumulated += segment_length

        # PK range declared longer than the geometry: clamp to the last vertex
        logger.debug(
            "interpolation_past_geometry_end",
            line_id=line_id,
            pk=pk,
            geometry_km=line.geometry_length_meters / 1000.0
        )
        return line.vertices[-1]

    def coordinate_at_pk_text(self, line_id: str, pk_text: str) -> GeoPoint:
        """Same as coordinate_at_pk with a ``PK<km>+<m>`` string."""
        return self.coordinate_at_pk(line_id, parse_pk(pk_text))
