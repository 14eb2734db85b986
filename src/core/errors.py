"""
Error taxonomy for the PK locator.
==================================
Every failure raised by the engine is a validation error: it is fatal to the
single call and retrying changes nothing, since the geometry is deterministic.

"Nothing nearby" is not an error. The Projector and the FacilityIndex return
the NoMatch / NoFacility sentinels for that case.
"""


class RailReferenceError(Exception):
    """Base class for all engine errors."""


class InvalidCoordinate(RailReferenceError, ValueError):
    """Longitude or latitude outside WGS84 bounds (or not a finite number)."""

    def __init__(self, longitude: float, latitude: float) -> None:
        self.longitude = longitude
        self.latitude = latitude
        super().__init__(
            f"Invalid coordinate (lon={longitude}, lat={latitude}): "
            "longitude must be in [-180, 180] and latitude in [-90, 90]"
        )


class InvalidRecord(RailReferenceError, ValueError):
    """A registration record (line, facility, PK text) is malformed."""


class PKOutOfRange(RailReferenceError, ValueError):
    """Requested PK lies outside the [pk_start, pk_end] range of a line."""

    def __init__(self, line_id: str, pk: float, pk_start: float, pk_end: float) -> None:
        self.line_id = line_id
        self.pk = pk
        self.pk_start = pk_start
        self.pk_end = pk_end
        super().__init__(
            f"PK {pk} km is outside line {line_id} range [{pk_start}, {pk_end}]"
        )


class DuplicateLineId(RailReferenceError):
    """A rail line with this id is already registered."""

    def __init__(self, line_id: str) -> None:
        self.line_id = line_id
        super().__init__(f"Rail line already registered: {line_id}")


class DuplicateFacilityId(RailReferenceError):
    """A facility with this id is already registered."""

    def __init__(self, facility_id: str) -> None:
        self.facility_id = facility_id
        super().__init__(f"Facility already registered: {facility_id}")


class LineNotFound(RailReferenceError, LookupError):
    """No rail line registered under this id."""

    def __init__(self, line_id: str) -> None:
        self.line_id = line_id
        super().__init__(f"Rail line not found: {line_id}")


class FacilityNotFound(RailReferenceError, LookupError):
    """No facility registered under this id."""

    def __init__(self, facility_id: str) -> None:
        self.facility_id = facility_id
        super().__init__(f"Facility not found: {facility_id}")
