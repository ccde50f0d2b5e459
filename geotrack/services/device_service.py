import logging

from geotrack.models.device import DeviceSettings, DeviceSettingsUpdate
from geotrack.storage.metadata_store import get_metadata_store

logger = logging.getLogger(__name__)


class DeviceService:
    def __init__(self):
        self.store = get_metadata_store()

    async def get_settings(self, device_id: str) -> DeviceSettings:
        settings = await self.store.get_settings(device_id)
        if settings is None:
            return DeviceSettings(device_id=device_id)
        return settings

    async def save_settings(
        self, device_id: str, update: DeviceSettingsUpdate
    ) -> DeviceSettings:
        settings = DeviceSettings(
            device_id=device_id,
            group_name=update.group,
            container_id=update.container_id,
            tractor_id=update.tractor_id,
            geofence_setting=update.geofence,
            label_color=update.label_color,
        )
        settings = await self.store.save_settings(settings)
        logger.info(f"Settings saved for device {device_id}")
        return settings


_service = DeviceService()


def get_device_service() -> DeviceService:
    return _service
