"""
Integration tests: shipped configuration and data files, end to end.
"""

import json
from pathlib import Path

import pytest

import main
from src.core.config import load_config
from src.core.geo import GeoPoint
from src.engine.report import build_engine
from src.engine.topology import ProjectionResult

ROOT = Path(__file__).parent.parent
CONFIG_PATH = ROOT / "config" / "config.yaml"


@pytest.fixture
def engine():
    return build_engine(load_config(str(CONFIG_PATH)))


class TestShippedData:

    def test_registries_loaded(self, engine):
        assert [line.id for line in engine.network.list_lines()] == [
            "LIGNE_LYON_MARSEILLE",
            "LIGNE_PARIS_LYON",
        ]
        assert engine.facilities.stats()['total'] == 4

    def test_projection_at_paris_origin(self, engine):
        result = engine.projector.project(GeoPoint(longitude=2.3522, latitude=48.8566))

        assert isinstance(result, ProjectionResult)
        assert result.line_id == "LIGNE_PARIS_LYON"
        assert result.pk_text == "PK0+000"

    def test_pk_round_trip_on_paris_lyon(self, engine):
        point = engine.interpolator.coordinate_at_pk("LIGNE_PARIS_LYON", 12.0)
        result = engine.projector.project(point)

        assert result.line_id == "LIGNE_PARIS_LYON"
        assert result.pk == pytest.approx(12.0, abs=1e-6)

    @pytest.mark.asyncio
    async def test_report_at_emergency_portal(self, engine):
        report = await engine.reporter.build_report(GeoPoint(longitude=2.3522, latitude=48.8566))
        records = report.to_records()

        assert records['position']['lineId'] == "LIGNE_PARIS_LYON"
        assert records['facility']['facilityId'] == "PORTAL_001"
        assert records['facility']['distanceMeters'] == 0.0


class TestCommandLine:

    def test_pk_lookup(self, capsys):
        exit_code = main.main([
            "--config", str(CONFIG_PATH),
            "--line", "LIGNE_PARIS_LYON",
            "--pk", "PK0+000",
        ])

        assert exit_code == 0
        out = capsys.readouterr().out
        payload = json.loads(out[out.index("{\n"):])
        assert payload['longitude'] == pytest.approx(2.3522)
        assert payload['latitude'] == pytest.approx(48.8566)

    def test_out_of_range_pk_fails(self, capsys):
        exit_code = main.main([
            "--config", str(CONFIG_PATH),
            "--line", "LIGNE_PARIS_LYON",
            "--pk", "999",
        ])

        assert exit_code == 2
        assert "outside" in capsys.readouterr().err

    def test_requires_one_query(self):
        with pytest.raises(SystemExit):
            main.main(["--config", str(CONFIG_PATH)])
