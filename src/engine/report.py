"""
Situation Reporter - Emergency Report Facade
============================================
Builds the combined "emergency situation" report for a GPS fix: the PK
projection and the nearest access facility.

Execution model:
- Both sub-queries run concurrently on worker threads and are joined.
- Each is bounded by report_timeout_seconds. A timeout degrades that
  sub-query to its sentinel (NoMatch / NoFacility) instead of failing the
  report; the sub-query name is listed in timed_out.
- Cancelling the report cancels both awaits. The registries are untouched
  because sub-queries only read snapshots.
- Validation errors (e.g. InvalidCoordinate) propagate unchanged.

When no facility is found the report carries the configured fallback
contacts explicitly; the engine never substitutes a wrong facility.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, TypeVar

import structlog

from src.core.config import EngineSettings
from src.core.geo import GeoPoint
from src.engine.facilities import FacilityIndex, FacilityOutcome, FacilitySearchResult, NoFacility
from src.engine.interpolation import LinearInterpolator
from src.engine.network import NetworkModel
from src.engine.topology import NoMatch, ProjectionOutcome, ProjectionResult, Projector

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SituationReport:
    """Projection and nearest facility for one GPS fix."""
    point: GeoPoint
    projection: ProjectionOutcome
    facility: FacilityOutcome
    fallback_contacts: Dict[str, str] = field(default_factory=dict)
    timed_out: List[str] = field(default_factory=list)

    @property
    def has_position(self) -> bool:
        return isinstance(self.projection, ProjectionResult)

    @property
    def has_facility(self) -> bool:
        return isinstance(self.facility, FacilitySearchResult)

    def to_records(self) -> Dict[str, Any]:
        """Records for the persistence and notification collaborators."""
        return {
            'coordinates': {
                'longitude': self.point.longitude,
                'latitude': self.point.latitude,
            },
            'position': self.projection.to_record() if self.has_position else None,
            'facility': self.facility.to_record() if self.has_facility else None,
            'fallbackContacts': dict(self.fallback_contacts) if not self.has_facility else None,
            'timedOut': list(self.timed_out),
        }


class SituationReporter:
    """
    Runs the projection and the facility search side by side.

    Usage:
        reporter = SituationReporter(projector, facilities, settings)
        report = await reporter.build_report(GeoPoint(longitude=2.35, latitude=48.85))
    """

    def __init__(
        self,
        projector: Projector,
        facilities: FacilityIndex,
        settings: Optional[EngineSettings] = None
    ) -> None:
        self.projector = projector
        self.facilities = facilities
        self.settings = settings or EngineSettings()

    async def _bounded(
        self,
        name: str,
        query: Callable[[], T],
        on_timeout: Callable[[], T],
        timed_out: List[str]
    ) -> T:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(query),
                timeout=self.settings.report_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                "report_subquery_timeout",
                subquery=name,
                timeout=self.settings.report_timeout_seconds
            )
            timed_out.append(name)
            return on_timeout()

    async def build_report(
        self,
        point: GeoPoint,
        category: Optional[str] = None
    ) -> SituationReport:
        """
        Build the situation report for a GPS fix.

        Args:
            point: GPS fix.
            category: Facility category; defaults to default_facility_category.

        Returns:
            SituationReport. Sentinels mark missing answers; nothing raises
            for "nothing nearby".
        """
        settings = self.settings
        category = category or settings.default_facility_category
        timed_out: List[str] = []

        projection, facility = await asyncio.gather(
            self._bounded(
                "projection",
                lambda: self.projector.project(point, settings.max_projection_distance_meters),
                lambda: NoMatch(max_distance_meters=settings.max_projection_distance_meters),
                timed_out
            ),
            self._bounded(
                "facility",
                lambda: self.facilities.find_nearest(
                    point, category, settings.max_facility_distance_meters
                ),
                lambda: NoFacility(
                    category=category,
                    max_distance_meters=settings.max_facility_distance_meters
                ),
                timed_out
            )
        )

        report = SituationReport(
            point=point,
            projection=projection,
            facility=facility,
            fallback_contacts={} if isinstance(facility, FacilitySearchResult)
            else dict(settings.fallback_contacts),
            timed_out=sorted(timed_out)
        )

        logger.info(
            "situation_report_built",
            lon=point.longitude,
            lat=point.latitude,
            pk=projection.pk_text if report.has_position else None,
            facility_id=facility.facility.id if report.has_facility else None,
            timed_out=report.timed_out
        )
        return report


@dataclass
class Engine:
    """Wired components of the PK locator."""
    settings: EngineSettings
    network: NetworkModel
    facilities: FacilityIndex
    projector: Projector
    interpolator: LinearInterpolator
    reporter: SituationReporter


def build_engine(settings: Optional[EngineSettings] = None) -> Engine:
    """
    Build every component and load the static data files.

    Missing data files leave the corresponding registry empty (logged);
    malformed ones raise.
    """
    settings = settings or EngineSettings()

    network = NetworkModel()
    if settings.network_path:
        try:
            network.load_lines(settings.network_path)
        except FileNotFoundError:
            logger.warning("network_file_missing", path=settings.network_path)

    facilities = FacilityIndex(
        max_distance_meters=settings.max_facility_distance_meters,
        maintenance_horizon_days=settings.maintenance_horizon_days
    )
    if settings.facilities_path:
        try:
            facilities.load_facilities(settings.facilities_path)
        except FileNotFoundError:
            logger.warning("facilities_file_missing", path=settings.facilities_path)

    projector = Projector(network, max_distance_meters=settings.max_projection_distance_meters)

    return Engine(
        settings=settings,
        network=network,
        facilities=facilities,
        projector=projector,
        interpolator=LinearInterpolator(network),
        reporter=SituationReporter(projector, facilities, settings)
    )
