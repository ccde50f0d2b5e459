from fastapi import APIRouter

from geotrack.models.device import DeviceSettings, DeviceSettingsUpdate
from geotrack.services.device_service import get_device_service

router = APIRouter()


@router.get("/{device_id}/settings", response_model=DeviceSettings)
async def get_settings(device_id: str):
    service = get_device_service()
    return await service.get_settings(device_id)


@router.post("/{device_id}/settings")
async def save_settings(device_id: str, update: DeviceSettingsUpdate):
    service = get_device_service()
    await service.save_settings(device_id, update)
    return {"success": True}
