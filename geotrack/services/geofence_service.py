import asyncio
import logging
from collections import defaultdict
from typing import Optional

from geotrack.core.geometry import ValidFix, fix_from, point_in_polygon
from geotrack.models.query import DataEntry, QueryResult
from geotrack.storage.metadata_store import get_metadata_store

logger = logging.getLogger(__name__)


def last_valid_fix(entries: list[DataEntry]) -> Optional[ValidFix]:
    """Most recent entry, by stored time, whose coordinates are a real fix."""
    for entry in sorted(entries, key=lambda e: e.time, reverse=True):
        fix = fix_from(entry.la, entry.lg)
        if isinstance(fix, ValidFix):
            return fix
    return None


class GeofenceAnnotator:
    def __init__(self):
        self.metadata = get_metadata_store()

    async def is_contained(self, device_id: str, fix: ValidFix) -> bool:
        geofence_id = await self.metadata.get_geofence_assignment(device_id)
        if geofence_id is None:
            return False

        polygon = await self.metadata.get_polygon(geofence_id)
        if not polygon:
            logger.info(f"Geofence {geofence_id} for device {device_id} not found")
            return False

        return point_in_polygon((fix.lat, fix.lon), polygon)

    async def annotate(self, result: QueryResult) -> QueryResult:
        """Stamp every data entry with its device's containment flag."""
        grouped: dict[str, list[DataEntry]] = defaultdict(list)
        for entry in result.data:
            grouped[entry.device_id].append(entry)

        flags = {device_id: False for device_id in grouped}
        checks = {}
        for device_id, entries in grouped.items():
            fix = last_valid_fix(entries)
            if fix is None:
                logger.debug(f"No valid fix for device {device_id}")
                continue
            checks[device_id] = self.is_contained(device_id, fix)

        outcomes = await asyncio.gather(*checks.values(), return_exceptions=True)
        for device_id, outcome in zip(checks, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Geofence lookup failed for device {device_id}: {outcome}")
                continue
            flags[device_id] = outcome

        for entry in result.data:
            entry.in_geofence = flags[entry.device_id]

        return result


_annotator = GeofenceAnnotator()


def get_geofence_annotator() -> GeofenceAnnotator:
    return _annotator
