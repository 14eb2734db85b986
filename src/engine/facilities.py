"""
Facility Index - Access Points near the Track
=============================================
Mutable registry of categorized point facilities (emergency crossings,
technical gates, work-site accesses, inspection passages...).

Key Features:
- CRUD by facility id on a copy-on-write registry
- Nearest facility lookup with category filter and radius cutoff
- Read-only aggregations: per-category listing, statistics, inspections due

Nearest search is a vectorised linear scan over the current snapshot. The
snapshot is sorted by id before the scan and numpy's argmin keeps the first
minimum, so equal distances resolve to the lowest id whatever the
registration order.
"""

import dataclasses
import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
import structlog
import yaml

from src.core.errors import (
    DuplicateFacilityId,
    FacilityNotFound,
    InvalidCoordinate,
    InvalidRecord,
)
from src.core.geo import GeoPoint, great_circle_distances
from src.core.repository import Repository, SnapshotRepository

logger = structlog.get_logger(__name__)

DEFAULT_MAX_FACILITY_DISTANCE = 5000.0  # meters
DEFAULT_MAINTENANCE_HORIZON_DAYS = 7

# Registration-record keys of the portal data files -> Facility field names
_FIELD_ALIASES = {
    'type': 'facility_type',
    'facilityType': 'facility_type',
    'coordinates': 'location',
    'emergencyContacts': 'contacts',
    'lineId': 'line_id',
    'accessHours': 'access_hours',
    'lastInspection': 'last_inspection',
    'nextInspection': 'next_inspection',
}


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise InvalidRecord(f"Invalid inspection date: {value!r}") from e


def _parse_location(value: Any) -> GeoPoint:
    if isinstance(value, GeoPoint):
        return value
    try:
        if isinstance(value, Mapping):
            return GeoPoint(longitude=float(value['longitude']), latitude=float(value['latitude']))
        return GeoPoint.from_lonlat(value)
    except InvalidCoordinate as e:
        raise InvalidRecord(f"Invalid facility location: {e}") from e
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidRecord(f"Malformed facility location: {value!r}") from e


@dataclass(frozen=True)
class Facility:
    """A categorized point of interest near the track."""
    id: str
    name: str
    category: str
    location: GeoPoint
    equipment: Tuple[str, ...] = ()
    restrictions: Tuple[str, ...] = ()
    contacts: Dict[str, str] = field(default_factory=dict, hash=False)
    status: str = "open"
    facility_type: Optional[str] = None
    line_id: Optional[str] = None
    pk: Optional[str] = None
    access_hours: Optional[str] = None
    direction: Optional[str] = None
    confidence: Optional[str] = None
    last_inspection: Optional[date] = None
    next_inspection: Optional[date] = None

    def __post_init__(self) -> None:
        if not self.id or not isinstance(self.id, str):
            raise InvalidRecord("Facility id must be a non-empty string")
        if not self.category:
            raise InvalidRecord(f"Facility {self.id} needs a category")
        object.__setattr__(self, 'location', _parse_location(self.location))
        object.__setattr__(self, 'equipment', tuple(self.equipment))
        object.__setattr__(self, 'restrictions', tuple(self.restrictions))
        object.__setattr__(self, 'contacts', {str(k): str(v) for k, v in dict(self.contacts).items()})
        object.__setattr__(self, 'last_inspection', _parse_date(self.last_inspection))
        object.__setattr__(self, 'next_inspection', _parse_date(self.next_inspection))

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "Facility":
        """
        Build a facility from a registration record.

        Both snake_case field names and the camelCase keys of the portal
        data files (type, coordinates, emergencyContacts...) are accepted.
        """
        if not isinstance(record, Mapping):
            raise InvalidRecord(f"Facility record must be a mapping, got {type(record).__name__}")
        known = {f.name for f in dataclasses.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in record.items():
            name = _FIELD_ALIASES.get(key, key)
            if name in known:
                kwargs[name] = value

        missing = [name for name in ('id', 'name', 'category', 'location') if name not in kwargs]
        if missing:
            raise InvalidRecord(f"Facility record missing fields: {', '.join(missing)}")

        kwargs['id'] = str(kwargs['id'])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'type': self.facility_type,
            'coordinates': {
                'latitude': self.location.latitude,
                'longitude': self.location.longitude,
            },
            'equipment': list(self.equipment),
            'restrictions': list(self.restrictions),
            'emergencyContacts': dict(self.contacts),
            'status': self.status,
            'lineId': self.line_id,
            'pk': self.pk,
            'accessHours': self.access_hours,
            'direction': self.direction,
            'confidence': self.confidence,
            'lastInspection': self.last_inspection.isoformat() if self.last_inspection else None,
            'nextInspection': self.next_inspection.isoformat() if self.next_inspection else None,
        }


@dataclass(frozen=True)
class FacilitySearchResult:
    """Nearest facility and how far it is."""
    facility: Facility
    distance_meters: float
    within_threshold: bool

    def to_record(self) -> Dict[str, Any]:
        """Record shape expected by the persistence and notification collaborators."""
        return {
            'facilityId': self.facility.id,
            'name': self.facility.name,
            'category': self.facility.category,
            'distanceMeters': round(self.distance_meters, 1),
        }


@dataclass(frozen=True)
class NoFacility:
    """Index empty, or nothing matches the category/radius."""
    category: Optional[str]
    max_distance_meters: float

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class MaintenanceDue:
    """A facility whose next inspection falls within the horizon."""
    facility: Facility
    days_until: int
    priority: str  # "urgent" when due today or overdue, else "high"


FacilityOutcome = Union[FacilitySearchResult, NoFacility]


class FacilityIndex:
    """
    Registry of access facilities with nearest-neighbour queries.

    Usage:
        index = FacilityIndex()
        index.load_facilities("data/facilities.json")
        result = index.find_nearest(point, category="emergency")
        if isinstance(result, NoFacility):
            # fall back to default emergency numbers
    """

    def __init__(
        self,
        repository: Optional[Repository[Facility]] = None,
        max_distance_meters: float = DEFAULT_MAX_FACILITY_DISTANCE,
        maintenance_horizon_days: int = DEFAULT_MAINTENANCE_HORIZON_DAYS
    ) -> None:
        self._repository: Repository[Facility] = (
            repository if repository is not None else SnapshotRepository()
        )
        self.max_distance_meters = max_distance_meters
        self.maintenance_horizon_days = maintenance_horizon_days

    # CRUD ---------------------------------------------------------------

    def add(self, facility: Facility) -> None:
        """
        Register a facility.

        Raises:
            DuplicateFacilityId: If the id is already registered.
        """
        if not self._repository.insert_new(facility.id, facility):
            raise DuplicateFacilityId(facility.id)
        logger.info("facility_added", facility_id=facility.id, category=facility.category)

    def update(self, facility_id: str, changes: Mapping[str, Any]) -> Facility:
        """
        Apply field changes to a facility.

        Args:
            facility_id: Facility to update.
            changes: Field name (or record alias) -> new value.

        Returns:
            The updated facility.

        Raises:
            FacilityNotFound: If the id is not registered.
            InvalidRecord: For unknown fields, an id change or invalid values.
        """
        current = self._repository.get(facility_id)
        if current is None:
            raise FacilityNotFound(facility_id)

        known = {f.name for f in dataclasses.fields(Facility)}
        normalized: Dict[str, Any] = {}
        for key, value in changes.items():
            name = _FIELD_ALIASES.get(key, key)
            if name not in known:
                raise InvalidRecord(f"Unknown facility field: {key}")
            normalized[name] = value

        if normalized.get('id', facility_id) != facility_id:
            raise InvalidRecord("A facility id cannot be changed; remove and add instead")

        updated = dataclasses.replace(current, **normalized)
        if not self._repository.replace_existing(facility_id, updated):
            # Removed concurrently between the read and the swap
            raise FacilityNotFound(facility_id)

        logger.info("facility_updated", facility_id=facility_id, fields=sorted(normalized))
        return updated

    def remove(self, facility_id: str) -> None:
        """
        Unregister a facility.

        Raises:
            FacilityNotFound: If the id is not registered.
        """
        if not self._repository.delete(facility_id):
            raise FacilityNotFound(facility_id)
        logger.info("facility_removed", facility_id=facility_id)

    def get(self, facility_id: str) -> Optional[Facility]:
        return self._repository.get(facility_id)

    def list_all(self) -> List[Facility]:
        """All facilities ordered by id."""
        return self._repository.list()

    def __len__(self) -> int:
        return len(self._repository)

    # Queries ------------------------------------------------------------

    def find_nearest(
        self,
        point: GeoPoint,
        category: Optional[str] = None,
        max_distance_meters: Optional[float] = None,
        fallback: bool = False
    ) -> FacilityOutcome:
        """
        Find the facility closest to a point.

        Args:
            point: Query position.
            category: Only consider this category; None means all.
            max_distance_meters: Search radius; defaults to the index's.
            fallback: Explicit "best guess" request. When True, the nearest
                facility beyond the radius is returned with
                within_threshold=False instead of NoFacility.

        Returns:
            FacilitySearchResult, or NoFacility when the index is empty,
            nothing matches the category, or (without fallback) nothing
            lies within the radius.
        """
        if max_distance_meters is None:
            max_distance_meters = self.max_distance_meters

        view = self._repository.snapshot()
        candidates = [
            view[facility_id] for facility_id in sorted(view)
            if category is None or view[facility_id].category == category
        ]

        if not candidates:
            return NoFacility(category=category, max_distance_meters=max_distance_meters)

        longitudes = np.array([f.location.longitude for f in candidates], dtype=float)
        latitudes = np.array([f.location.latitude for f in candidates], dtype=float)
        distances = great_circle_distances(point, longitudes, latitudes)

        best = int(np.argmin(distances))
        distance = float(distances[best])
        within = distance <= max_distance_meters

        if not within and not fallback:
            logger.debug(
                "facility_none_within_radius",
                category=category,
                nearest_distance=distance,
                max_distance=max_distance_meters
            )
            return NoFacility(category=category, max_distance_meters=max_distance_meters)

        return FacilitySearchResult(
            facility=candidates[best],
            distance_meters=distance,
            within_threshold=within
        )

    def list_by_category(self, category: str) -> List[Facility]:
        return [f for f in self.list_all() if f.category == category]

    def list_by_line(self, line_id: str) -> List[Facility]:
        return [f for f in self.list_all() if f.line_id == line_id]

    def stats(self) -> Dict[str, Any]:
        """Counts grouped by category, status, type and line."""
        facilities = self.list_all()
        return {
            'total': len(facilities),
            'by_category': dict(Counter(f.category for f in facilities)),
            'by_status': dict(Counter(f.status for f in facilities)),
            'by_type': dict(Counter(f.facility_type for f in facilities if f.facility_type)),
            'by_line': dict(Counter(f.line_id for f in facilities if f.line_id)),
        }

    def due_for_maintenance(
        self,
        within_days: Optional[int] = None,
        today: Optional[date] = None
    ) -> List[MaintenanceDue]:
        """
        Facilities whose next inspection falls within the horizon.

        Overdue inspections are included (negative days_until). Facilities
        without a scheduled inspection are skipped.

        Args:
            within_days: Horizon in days from today; defaults to the
                index's maintenance_horizon_days.
            today: Reference date; defaults to the current date.

        Returns:
            MaintenanceDue entries sorted by days_until, then facility id.
        """
        if within_days is None:
            within_days = self.maintenance_horizon_days
        today = today or date.today()
        due: List[MaintenanceDue] = []

        for facility in self.list_all():
            if facility.next_inspection is None:
                continue
            days_until = (facility.next_inspection - today).days
            if days_until <= within_days:
                due.append(MaintenanceDue(
                    facility=facility,
                    days_until=days_until,
                    priority="urgent" if days_until <= 0 else "high"
                ))

        due.sort(key=lambda item: (item.days_until, item.facility.id))
        return due

    # Loading ------------------------------------------------------------

    def load_facilities(self, path: str) -> int:
        """
        Register every facility from a JSON or YAML file.

        The file holds either a list of records or ``{"facilities": [...]}``.
        Nothing is registered unless every record is valid and new.

        Returns:
            Number of facilities registered.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If the document structure is invalid.
            DuplicateFacilityId: If an id is already registered.
        """
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Facilities file not found: {path}")

        logger.info("facilities_loading", path=path)
        with open(file_path, 'r', encoding='utf-8') as f:
            if file_path.suffix.lower() in ('.yaml', '.yml'):
                document = yaml.safe_load(f)
            else:
                document = json.load(f)

        if isinstance(document, dict):
            document = document.get('facilities', [])
        if not isinstance(document, list):
            raise ValueError("Facilities file must hold a list or a 'facilities' mapping")

        # Validate the whole file before publishing anything
        facilities: Dict[str, Facility] = {}
        for record in document:
            facility = Facility.from_dict(record)
            if facility.id in facilities:
                raise DuplicateFacilityId(facility.id)
            facilities[facility.id] = facility

        collisions = self._repository.insert_all(facilities)
        if collisions:
            raise DuplicateFacilityId(collisions[0])

        logger.info("facilities_loaded", path=path, facilities_count=len(facilities))
        return len(facilities)
