"""
Network Model - Rail Corridor Registry
======================================
Registry of named rail corridors. Each corridor is an ordered polyline with
its linear-referencing range (pk_start .. pk_end, in km).

Lifecycle rules:
- Lines are registered at startup (static data file) or at runtime.
- Registering an existing id fails; replacing requires replace_line.
- Lines are never deleted implicitly.

Segment lengths and cumulative offsets are computed once, when the RailLine
is built, so projections never recompute great-circle lengths.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog
import yaml

from src.core.errors import DuplicateLineId, InvalidCoordinate, InvalidRecord, LineNotFound
from src.core.geo import GeoPoint, great_circle_distance
from src.core.repository import Repository, SnapshotRepository

logger = structlog.get_logger(__name__)

DEFAULT_DIRECTION = "unspecified"


@dataclass(frozen=True)
class RailLine:
    """
    A rail corridor with its kilometric range.

    vertices are ordered from the pk_start end to the pk_end end.
    """
    id: str
    name: str
    vertices: Tuple[GeoPoint, ...]
    pk_start: float
    pk_end: float
    direction: str = DEFAULT_DIRECTION
    segment_lengths: Tuple[float, ...] = field(init=False, repr=False, compare=False)
    cumulative_lengths: Tuple[float, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.id or not isinstance(self.id, str):
            raise InvalidRecord("Rail line id must be a non-empty string")
        vertices = tuple(self.vertices)
        if len(vertices) < 2:
            raise InvalidRecord(f"Rail line {self.id} needs at least 2 vertices, got {len(vertices)}")
        if not all(isinstance(v, GeoPoint) for v in vertices):
            raise InvalidRecord(f"Rail line {self.id} vertices must be GeoPoint instances")
        if not float(self.pk_start) < float(self.pk_end):
            raise InvalidRecord(
                f"Rail line {self.id} requires pk_start < pk_end "
                f"(got {self.pk_start} .. {self.pk_end})"
            )

        lengths = tuple(
            great_circle_distance(vertices[i], vertices[i + 1])
            for i in range(len(vertices) - 1)
        )
        cumulative = [0.0]
        for length in lengths:
            cumulative.append(cumulative[-1] + length)

        # frozen dataclass: derived fields are set through object.__setattr__
        object.__setattr__(self, 'vertices', vertices)
        object.__setattr__(self, 'pk_start', float(self.pk_start))
        object.__setattr__(self, 'pk_end', float(self.pk_end))
        object.__setattr__(self, 'segment_lengths', lengths)
        object.__setattr__(self, 'cumulative_lengths', tuple(cumulative))

    @property
    def segment_count(self) -> int:
        return len(self.vertices) - 1

    @property
    def geometry_length_meters(self) -> float:
        return self.cumulative_lengths[-1]

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "RailLine":
        """
        Build a line from a registration record.

        Accepted keys: id, name, geometry|vertices ([lon, lat] pairs),
        pkStart|pk_start, pkEnd|pk_end, direction.
        """
        if not isinstance(record, Mapping):
            raise InvalidRecord(f"Rail line record must be a mapping, got {type(record).__name__}")
        try:
            line_id = record['id']
            coords = record.get('geometry', record.get('vertices'))
            pk_start = record.get('pkStart', record.get('pk_start', 0.0))
            pk_end = record.get('pkEnd', record.get('pk_end'))
        except (AttributeError, KeyError, TypeError) as e:
            raise InvalidRecord(f"Rail line record missing field: {e}") from e

        if coords is None or pk_end is None:
            raise InvalidRecord(f"Rail line {line_id} record needs geometry and pkEnd")

        try:
            vertices = tuple(GeoPoint.from_lonlat(pair) for pair in coords)
            return cls(
                id=str(line_id),
                name=str(record.get('name') or line_id),
                vertices=vertices,
                pk_start=float(pk_start),
                pk_end=float(pk_end),
                direction=str(record.get('direction') or DEFAULT_DIRECTION)
            )
        except InvalidRecord:
            raise
        except InvalidCoordinate as e:
            raise InvalidRecord(f"Rail line {line_id} has an invalid vertex: {e}") from e
        except (TypeError, ValueError) as e:
            raise InvalidRecord(f"Rail line {line_id} record is malformed: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'geometry': [list(v.as_lonlat()) for v in self.vertices],
            'pkStart': self.pk_start,
            'pkEnd': self.pk_end,
            'direction': self.direction,
        }

    def summary(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'pkStart': self.pk_start,
            'pkEnd': self.pk_end,
            'direction': self.direction,
            'segments': self.segment_count,
        }


def _read_document(path: Path) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        if path.suffix.lower() in ('.yaml', '.yml'):
            return yaml.safe_load(f)
        return json.load(f)


def _records_from(document: Any, key: str) -> List[Any]:
    if isinstance(document, dict):
        document = document.get(key, [])
    if not isinstance(document, list):
        raise ValueError(f"Expected a list of records or a mapping with '{key}'")
    return document


class NetworkModel:
    """
    Registry of rail lines backed by a copy-on-write repository.

    Usage:
        network = NetworkModel()
        network.load_lines("data/network.json")
        line = network.get_line("LIGNE_PARIS_LYON")
    """

    def __init__(self, repository: Optional[Repository[RailLine]] = None) -> None:
        self._repository: Repository[RailLine] = (
            repository if repository is not None else SnapshotRepository()
        )

    def register_line(self, line: RailLine) -> None:
        """
        Register a new line.

        Raises:
            DuplicateLineId: If a line with the same id is already registered.
        """
        if not self._repository.insert_new(line.id, line):
            raise DuplicateLineId(line.id)
        logger.info(
            "network_line_registered",
            line_id=line.id,
            segments=line.segment_count,
            pk_start=line.pk_start,
            pk_end=line.pk_end
        )

    def replace_line(self, line_id: str, line: RailLine) -> None:
        """
        Replace an existing line.

        Raises:
            LineNotFound: If no line is registered under line_id.
            InvalidRecord: If line.id differs from line_id.
        """
        if line.id != line_id:
            raise InvalidRecord(f"Replacement line id {line.id} does not match {line_id}")
        if not self._repository.replace_existing(line_id, line):
            raise LineNotFound(line_id)
        logger.info("network_line_replaced", line_id=line_id, segments=line.segment_count)

    def get_line(self, line_id: str) -> Optional[RailLine]:
        return self._repository.get(line_id)

    def list_lines(self) -> List[RailLine]:
        """All lines, ordered by id."""
        return self._repository.list()

    def list_summaries(self) -> List[Dict[str, Any]]:
        return [line.summary() for line in self.list_lines()]

    def snapshot(self) -> Mapping[str, RailLine]:
        """Immutable view for a single read operation."""
        return self._repository.snapshot()

    def __len__(self) -> int:
        return len(self._repository)

    def load_lines(self, path: str) -> int:
        """
        Register every line from a JSON or YAML file.

        The file holds either a list of line records or ``{"lines": [...]}``.
        Entries saved as ``[id, record]`` pairs are accepted as well.
        Nothing is registered unless every line is valid and new.

        Args:
            path: Path to the data file.

        Returns:
            Number of lines registered.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If the document structure is invalid.
            DuplicateLineId: If a line id is already registered.
        """
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Network file not found: {path}")

        logger.info("network_loading", path=path)
        records = _records_from(_read_document(file_path), 'lines')

        # Validate the whole file before publishing anything
        lines: Dict[str, RailLine] = {}
        for entry in records:
            if isinstance(entry, (list, tuple)) and len(entry) == 2:
                entry = entry[1]
            line = RailLine.from_dict(entry)
            if line.id in lines:
                raise DuplicateLineId(line.id)
            lines[line.id] = line

        collisions = self._repository.insert_all(lines)
        if collisions:
            raise DuplicateLineId(collisions[0])

        logger.info("network_loaded", path=path, lines_count=len(lines))
        return len(lines)

    def save_lines(self, path: str) -> None:
        """Write all lines to a JSON file as ``{"timestamp", "lines"}``."""
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'lines': [line.to_dict() for line in self.list_lines()],
        }
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)

        logger.info("network_saved", path=path, lines_count=len(data['lines']))

