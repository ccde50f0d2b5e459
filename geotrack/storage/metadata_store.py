from datetime import datetime
from typing import Optional

from geotrack.core.redis_client import get_redis_client
from geotrack.models.device import NO_GEOFENCE, DeviceSettings, Geofence


class MetadataStore:
    """Device settings and geofence polygons used by the annotator."""

    def __init__(self):
        self.redis = None

    async def initialize(self):
        if not self.redis:
            self.redis = await get_redis_client()

    async def get_settings(self, device_id: str) -> Optional[DeviceSettings]:
        await self.initialize()
        data = await self.redis.get(f"device_settings:{device_id}")
        if not data:
            return None
        return DeviceSettings.model_validate_json(data)

    async def save_settings(self, settings: DeviceSettings) -> DeviceSettings:
        await self.initialize()
        settings.updated_at = datetime.utcnow()
        await self.redis.set(
            f"device_settings:{settings.device_id}", settings.model_dump_json()
        )
        return settings

    async def get_geofence(self, geofence_id: str) -> Optional[Geofence]:
        await self.initialize()
        data = await self.redis.get(f"geofence:{geofence_id}")
        if not data:
            return None
        return Geofence.model_validate_json(data)

    async def save_geofence(self, geofence: Geofence) -> Geofence:
        await self.initialize()
        if geofence.created_at is None:
            geofence.created_at = datetime.utcnow()
        await self.redis.set(f"geofence:{geofence.id}", geofence.model_dump_json())
        return geofence

    async def get_geofence_assignment(self, device_id: str) -> Optional[str]:
        settings = await self.get_settings(device_id)
        if settings is None:
            return None
        if not settings.geofence_setting or settings.geofence_setting == NO_GEOFENCE:
            return None
        return settings.geofence_setting

    async def get_polygon(self, polygon_id: str) -> Optional[list[list[float]]]:
        geofence = await self.get_geofence(polygon_id)
        if geofence is None:
            return None
        return geofence.coordinates


_store = MetadataStore()


def get_metadata_store() -> MetadataStore:
    return _store
