from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

NO_GEOFENCE = "None"


class DeviceSettings(BaseModel):
    device_id: str
    group_name: str = "default"
    container_id: str = ""
    tractor_id: str = ""
    geofence_setting: Optional[str] = NO_GEOFENCE
    label_color: str = "#000000"
    updated_at: Optional[datetime] = None


class DeviceSettingsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    group: str = "default"
    container_id: str = Field(default="", alias="containerId")
    tractor_id: str = Field(default="", alias="tractorId")
    geofence: Optional[str] = NO_GEOFENCE
    label_color: str = Field(default="#000000", alias="labelColor")


class Geofence(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    name: str
    description: str = ""
    color: str = "#3388ff"
    coordinates: list[list[float]]
    created_at: Optional[datetime] = None
