"""
Test Suite for the Projector (Rail-Lock onto the network)
=========================================================
Projection of GPS fixes onto registered lines: PK, distance, confidence tier,
radius cutoff and deterministic tie-breaking.
"""

import math

import pytest

from src.core.geo import EARTH_RADIUS_METERS, GeoPoint, interpolate
from src.engine.network import NetworkModel, RailLine
from src.engine.topology import (
    ConfidenceTier,
    NoMatch,
    ProjectionResult,
    Projector,
    confidence_tier,
)

ONE_DEGREE_KM = EARTH_RADIUS_METERS * math.pi / 180.0 / 1000.0


def make_line(line_id, coords, pk_start=0.0, pk_end=None, name=None, direction="unspecified"):
    vertices = tuple(GeoPoint(longitude=lon, latitude=lat) for lon, lat in coords)
    return RailLine(
        id=line_id,
        name=name or line_id,
        vertices=vertices,
        pk_start=pk_start,
        pk_end=pk_end if pk_end is not None else pk_start + 1000.0,
        direction=direction
    )


@pytest.fixture
def line_a_network() -> NetworkModel:
    """Line A: (0,0) -> (0,1), PK 0 .. 111.2."""
    network = NetworkModel()
    network.register_line(make_line("A", [(0.0, 0.0), (0.0, 1.0)], pk_end=111.2))
    return network


@pytest.fixture
def paris_network() -> NetworkModel:
    """Two short Paris tracks, as used in the Rail-Lock demo data."""
    network = NetworkModel()
    network.register_line(make_line(
        "SHAPE_A",
        [(2.3522, 48.8566), (2.3530, 48.8570), (2.3540, 48.8575)],
        pk_end=10.0,
        name="Track A",
        direction="Est"
    ))
    network.register_line(make_line(
        "SHAPE_B",
        [(2.3600, 48.8600), (2.3610, 48.8605), (2.3620, 48.8610)],
        pk_end=10.0,
        name="Track B"
    ))
    return network


class TestProjector:
    """Core projection behaviour."""

    def test_point_beside_line_a(self, line_a_network: NetworkModel):
        """Test projecting (0.0001, 0.5) onto line A."""
        result = Projector(line_a_network).project(
            GeoPoint(longitude=0.0001, latitude=0.5),
            max_distance_meters=5000
        )

        assert isinstance(result, ProjectionResult)
        assert result.line_id == "A"
        assert result.perpendicular_distance_meters < 20.0
        assert result.pk == pytest.approx(55.6, abs=0.01)
        assert result.confidence_tier is ConfidenceTier.VERY_HIGH
        assert result.segment_index == 0

    def test_point_on_vertex(self, paris_network: NetworkModel):
        """Test that every registered vertex projects with ~0 m error."""
        projector = Projector(paris_network)

        for line in paris_network.list_lines():
            for vertex in line.vertices:
                result = projector.project(vertex)

                assert isinstance(result, ProjectionResult)
                assert result.line_id == line.id
                assert result.perpendicular_distance_meters == pytest.approx(0.0, abs=1e-6)
                assert result.confidence_tier is ConfidenceTier.VERY_HIGH

    def test_first_vertex_is_pk_start(self, paris_network: NetworkModel):
        result = Projector(paris_network).project(GeoPoint(longitude=2.3522, latitude=48.8566))

        assert result.pk == pytest.approx(0.0, abs=1e-9)
        assert result.pk_text == "PK0+000"

    def test_far_point_no_match(self, line_a_network: NetworkModel):
        """Test that a fix beyond the radius yields NoMatch, not a guess."""
        result = Projector(line_a_network).project(
            GeoPoint(longitude=10.0, latitude=10.0),
            max_distance_meters=5000
        )

        assert isinstance(result, NoMatch)
        assert not result
        assert result.max_distance_meters == 5000
        assert result.nearest_distance_meters > 5000

    def test_empty_network_no_match(self):
        result = Projector(NetworkModel()).project(GeoPoint(longitude=2.35, latitude=48.85))

        assert isinstance(result, NoMatch)
        assert result.nearest_distance_meters is None

    def test_default_radius_from_constructor(self, line_a_network: NetworkModel):
        """Test that the Projector's own radius applies when none is given."""
        # ~1.1 km east of line A
        point = GeoPoint(longitude=0.01, latitude=0.5)

        assert isinstance(Projector(line_a_network, max_distance_meters=500).project(point), NoMatch)
        assert isinstance(Projector(line_a_network, max_distance_meters=5000).project(point), ProjectionResult)

    def test_tier_does_not_decide_match(self, line_a_network: NetworkModel):
        """Test that a very-low tier still matches when within the radius."""
        # ~3.3 km east of line A
        result = Projector(line_a_network).project(
            GeoPoint(longitude=0.03, latitude=0.5),
            max_distance_meters=5000
        )

        assert isinstance(result, ProjectionResult)
        assert result.confidence_tier is ConfidenceTier.VERY_LOW

    def test_pk_non_decreasing_along_line(self):
        """Test that PK never decreases when walking the vertex sequence."""
        network = NetworkModel()
        coords = [(0.0, 0.0), (0.0, 0.01), (0.01, 0.02), (0.02, 0.02), (0.02, 0.05)]
        network.register_line(make_line("W", coords, pk_end=100.0))
        line = network.get_line("W")
        projector = Projector(network)

        previous = -math.inf
        for i in range(line.segment_count):
            for t in (0.0, 0.3, 0.7):
                point = interpolate(line.vertices[i], line.vertices[i + 1], t)
                result = projector.project(point)
                assert result.pk >= previous - 1e-9
                previous = result.pk

    def test_pk_start_offset(self):
        """Test that PK counts from the line's pk_start."""
        network = NetworkModel()
        network.register_line(make_line("A", [(0.0, 0.0), (0.0, 1.0)], pk_start=100.0, pk_end=211.2))

        result = Projector(network).project(GeoPoint(longitude=0.0, latitude=0.5))

        assert result.pk == pytest.approx(100.0 + ONE_DEGREE_KM / 2, abs=1e-6)

    def test_pk_within_declared_range(self):
        """Test that PK is capped at pk_end when geometry is longer than the range."""
        network = NetworkModel()
        network.register_line(make_line("S", [(0.0, 0.0), (0.0, 1.0)], pk_end=50.0))

        result = Projector(network).project(GeoPoint(longitude=0.0, latitude=0.9))

        assert result.pk == 50.0

    def test_second_segment_accumulates_first(self):
        network = NetworkModel()
        network.register_line(make_line("L", [(0.0, 0.0), (0.0, 1.0), (1.0, 1.0)], pk_end=300.0))
        line = network.get_line("L")

        result = Projector(network).project(GeoPoint(longitude=0.5, latitude=1.0))

        assert result.segment_index == 1
        assert result.t == pytest.approx(0.5, abs=1e-9)
        expected = (line.segment_lengths[0] + 0.5 * line.segment_lengths[1]) / 1000.0
        assert result.pk == pytest.approx(expected, abs=1e-6)

    def test_nearest_of_two_lines(self, paris_network: NetworkModel):
        projector = Projector(paris_network)

        assert projector.project(GeoPoint(longitude=2.3531, latitude=48.8569)).line_id == "SHAPE_A"
        assert projector.project(GeoPoint(longitude=2.3611, latitude=48.8604)).line_id == "SHAPE_B"

    def test_tie_broken_by_line_id(self):
        """Test that identical corridors resolve to the lexically smallest id."""
        coords = [(2.0, 48.0), (2.0, 48.1)]
        for order in (["B", "A"], ["A", "B"]):
            network = NetworkModel()
            for line_id in order:
                network.register_line(make_line(line_id, coords, pk_end=20.0))

            result = Projector(network).project(GeoPoint(longitude=2.001, latitude=48.05))
            assert result.line_id == "A"

    def test_line_across_antimeridian(self):
        """Test that a short line crossing ±180 only matches fixes beside it."""
        network = NetworkModel()
        network.register_line(make_line("DATELINE", [(179.99, 0.0), (-179.99, 0.0)], pk_end=2.3))
        projector = Projector(network)

        far_side = projector.project(GeoPoint(longitude=0.0, latitude=0.0), max_distance_meters=5000)
        assert isinstance(far_side, NoMatch)

        result = projector.project(GeoPoint(longitude=-180.0, latitude=0.0))
        assert isinstance(result, ProjectionResult)
        assert result.t == pytest.approx(0.5, abs=1e-6)
        assert result.perpendicular_distance_meters == pytest.approx(0.0, abs=1e-6)
        assert result.pk == pytest.approx(network.get_line("DATELINE").geometry_length_meters / 2000.0)

    def test_result_carries_line_metadata(self, paris_network: NetworkModel):
        result = Projector(paris_network).project(GeoPoint(longitude=2.3530, latitude=48.8570))

        assert result.line_name == "Track A"
        assert result.direction == "Est"


class TestProjectionRecords:
    """Collaborator record rendering."""

    def test_to_record(self, line_a_network: NetworkModel):
        result = Projector(line_a_network).project(GeoPoint(longitude=0.0001, latitude=0.5))
        record = result.to_record()

        assert record['pk'] == "PK55+597"
        assert record['lineId'] == "A"
        assert record['lineName'] == "A"
        assert record['confidenceTier'] == "very_high"
        assert record['distanceMeters'] == pytest.approx(11.1, abs=0.1)


class TestConfidenceTier:
    """Distance thresholds of the confidence tiers."""

    @pytest.mark.parametrize("distance,tier", [
        (0.0, ConfidenceTier.VERY_HIGH),
        (100.0, ConfidenceTier.VERY_HIGH),
        (100.1, ConfidenceTier.HIGH),
        (500.0, ConfidenceTier.HIGH),
        (999.9, ConfidenceTier.MEDIUM),
        (1000.0, ConfidenceTier.MEDIUM),
        (2000.0, ConfidenceTier.LOW),
        (2000.5, ConfidenceTier.VERY_LOW),
    ])
    def test_thresholds(self, distance, tier):
        assert confidence_tier(distance) is tier
