import math
import re
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from geotrack.core.geometry import Fix, fix_from

FieldValue = Union[bool, int, float, str]


class DataRecord(BaseModel):
    log_ts: int
    la: float
    lg: float
    tmp: float
    tiltx: int
    tilty: int
    tiltz: int
    corev: float
    liionv: float

    @property
    def fix(self) -> Fix:
        return fix_from(self.la, self.lg)


class NotifyRecord(BaseModel):
    gnssft: float
    txtime: float
    solar_v: float
    ax: float
    ay: float
    az: float
    gx: float
    gy: float
    gz: float
    cn_no: int
    cn_total: int
    cn_max: int
    cn_min: int
    cn_avg: float
    csp: int
    csq: int
    bat_src: int
    wakeup: int
    wwan_t: float
    cpin_t: float
    reg_t: float
    ack_t: float
    fw_ver: str
    next_t: float
    crsp: Optional[int] = None
    crsq: Optional[int] = None


_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def leading_int(value: Any) -> Optional[int]:
    """Integer prefix of ``value``, truncating numbers; ``None`` when unreadable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        return int(match.group(1)) if match else None
    return None


class MessageHeader(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: Optional[int] = None
    ts: Optional[int] = None
    imei: Optional[str] = None

    @field_validator("id", "ts", mode="before")
    @classmethod
    def _lenient_int(cls, value: Any) -> Optional[int]:
        return leading_int(value)


class NetworkInfo(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    oper: Optional[str] = None
    ip: Optional[str] = None


class Envelope(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    msg: MessageHeader = Field(default_factory=MessageHeader)
    net: NetworkInfo = Field(default_factory=NetworkInfo)
    remark: Optional[str] = None
    data: Optional[str] = None
    notify: Optional[str] = None
    value: Optional[str] = None


class StoredPoint(BaseModel):
    measurement: str
    tags: dict[str, str]
    fields: dict[str, FieldValue]
    time_ns: int


class FieldRow(BaseModel):
    """One field of one stored point.

    Field order is significant: serialized rows start with time, device and
    type, so rows sharing a sorted-set score stay grouped per point and
    ordered by nanosecond time.
    """

    time: int
    device_id: str
    type: str
    measurement: str
    field: str
    value: FieldValue

    @property
    def point_key(self) -> tuple[int, str, str]:
        return self.time, self.device_id, self.type
