import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_DURATION_PART = re.compile(r"(\d+)(ms|s|m|h|d|w)")
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


def parse_duration(token: str) -> timedelta:
    """Parse a duration token such as ``1h``, ``30m`` or ``1d12h``."""
    if not token or not re.fullmatch(r"(?:\d+(?:ms|s|m|h|d|w))+", token):
        raise ValueError(f"Invalid range duration: {token!r}")

    total = timedelta()
    for amount, unit in _DURATION_PART.findall(token):
        total += int(amount) * _DURATION_UNITS[unit]

    if total <= timedelta():
        raise ValueError(f"Range duration must be positive: {token!r}")
    return total


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class QueryWindow(BaseModel):
    """Either a relative ``range`` ending now or an explicit ``[from, to)`` pair.

    The explicit pair only applies when both ends are given; otherwise the
    relative range is used.
    """

    model_config = ConfigDict(populate_by_name=True)

    range: str = "1h"
    start: Optional[datetime] = Field(default=None, alias="from")
    stop: Optional[datetime] = Field(default=None, alias="to")

    @field_validator("range")
    @classmethod
    def _check_range(cls, value: str) -> str:
        parse_duration(value)
        return value

    @property
    def is_explicit(self) -> bool:
        return self.start is not None and self.stop is not None

    def cache_key(self) -> str:
        if self.is_explicit:
            return f"messages_{self.start.isoformat()}_{self.stop.isoformat()}"
        return f"messages_{self.range}"

    def bounds(self, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
        if self.is_explicit:
            return _as_utc(self.start), _as_utc(self.stop)

        end = _as_utc(now) if now else datetime.now(timezone.utc)
        return end - parse_duration(self.range), end


class EntryBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time: datetime
    device_id: str
    id: Optional[int] = None
    ts: Optional[int] = None
    imei: str = ""
    oper: str = ""
    ip: str = ""


class DataEntry(EntryBase):
    remark: str = ""
    log_ts: int
    la: float = 0
    lg: float = 0
    tmp: float = 0
    tiltx: int = 0
    tilty: int = 0
    tiltz: int = 0
    corev: float = 0
    liionv: float = 0
    in_geofence: bool = Field(default=False, alias="inGeofence")


class NotifyEntry(EntryBase):
    gnssft: float
    txtime: Optional[float] = None
    solar_v: Optional[float] = None
    ax: Optional[float] = None
    ay: Optional[float] = None
    az: Optional[float] = None
    gx: Optional[float] = None
    gy: Optional[float] = None
    gz: Optional[float] = None
    cn_no: Optional[int] = None
    cn_total: Optional[int] = None
    cn_max: Optional[int] = None
    cn_min: Optional[int] = None
    cn_avg: Optional[float] = None
    csp: Optional[int] = None
    csq: Optional[int] = None
    bat_src: Optional[int] = None
    wakeup: Optional[int] = None
    wwan_t: Optional[float] = None
    cpin_t: Optional[float] = None
    reg_t: Optional[float] = None
    ack_t: Optional[float] = None
    fw_ver: Optional[str] = None
    next_t: Optional[float] = None
    crsp: Optional[int] = None
    crsq: Optional[int] = None


class QueryResult(BaseModel):
    data: list[DataEntry] = Field(default_factory=list)
    notify: list[NotifyEntry] = Field(default_factory=list)
