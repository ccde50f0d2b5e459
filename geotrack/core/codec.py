"""Decoders for the binary payloads reported by field trackers.

Both payload families are little-endian and base64 encoded inside the MQTT
envelope. Layouts are described as tables of ``FieldSpec`` and read by
``read_fields``; scaling is applied afterwards. Offsets, widths and scale
factors must stay byte-exact with deployed firmware.
"""

import base64
import binascii
import logging
import struct
from typing import NamedTuple, Optional, Union

from geotrack.models.telemetry import DataRecord, NotifyRecord

logger = logging.getLogger(__name__)

DATA_MAGIC = 0xA5
DATA_HEADER_SIZE = 4

COORD_SCALE = 1e-6
TEMPERATURE_SCALE = 0.01
VOLTAGE_SCALE = 0.1
SOLAR_VOLTAGE_SCALE = 0.001
MS_PER_SECOND = 1000
FIX_TIME_UNAVAILABLE = -1
FIX_TIME_UNAVAILABLE_VALUE = -10.0

NOTIFY_BASE_SIZE = 92
NOTIFY_EXTENDED_SIZE = 100


class FieldSpec(NamedTuple):
    name: str
    fmt: str
    offset: int


DATA_RECORD_LAYOUT = (
    FieldSpec("log_ts", "I", 0),
    FieldSpec("la", "i", 4),
    FieldSpec("lg", "i", 8),
    FieldSpec("tmp", "h", 12),
    FieldSpec("tiltx", "b", 14),
    FieldSpec("tilty", "b", 15),
    FieldSpec("tiltz", "b", 16),
    FieldSpec("corev", "B", 17),
    FieldSpec("liionv", "B", 18),
)

NOTIFY_LAYOUT = (
    FieldSpec("gnssft", "i", 0),
    FieldSpec("txtime", "I", 4),
    FieldSpec("solar_v", "I", 8),
    FieldSpec("ax", "f", 12),
    FieldSpec("ay", "f", 16),
    FieldSpec("az", "f", 20),
    FieldSpec("gx", "f", 24),
    FieldSpec("gy", "f", 28),
    FieldSpec("gz", "f", 32),
    FieldSpec("cn_no", "i", 36),
    FieldSpec("cn_total", "i", 40),
    FieldSpec("cn_max", "i", 44),
    FieldSpec("cn_min", "i", 48),
    FieldSpec("csp", "i", 52),
    FieldSpec("csq", "i", 56),
    FieldSpec("bat_src", "i", 60),
    FieldSpec("wakeup", "i", 64),
    FieldSpec("wwan_t", "I", 68),
    FieldSpec("cpin_t", "I", 72),
    FieldSpec("reg_t", "I", 76),
    FieldSpec("ack_t", "I", 80),
    FieldSpec("fw_ver", "I", 84),
    FieldSpec("next_t", "I", 88),
)

NOTIFY_EXTENDED_TAIL = (
    FieldSpec("crsp", "i", 92),
    FieldSpec("crsq", "i", 96),
)


def layout_size(layout: tuple[FieldSpec, ...]) -> int:
    return max(spec.offset + struct.calcsize("<" + spec.fmt) for spec in layout)


DATA_RECORD_SIZE = layout_size(DATA_RECORD_LAYOUT)


def read_fields(buffer: bytes, layout: tuple[FieldSpec, ...], base: int = 0) -> dict:
    """Read every field of ``layout`` little-endian, relative to ``base``."""
    return {
        spec.name: struct.unpack_from("<" + spec.fmt, buffer, base + spec.offset)[0]
        for spec in layout
    }


def _b64decode(payload: Union[str, bytes, None]) -> Optional[bytes]:
    if payload is None:
        return None
    if isinstance(payload, bytes):
        return payload
    try:
        return base64.b64decode(payload)
    except (binascii.Error, ValueError) as e:
        logger.error(f"Payload is not valid base64: {e}")
        return None


def format_firmware_version(raw: int) -> str:
    return f"{(raw >> 24) & 0xFF}.{(raw >> 16) & 0xFF}.{(raw >> 8) & 0xFF}"


def decode_data_batch(payload: Union[str, bytes, None]) -> Optional[list[DataRecord]]:
    """Decode a batched location/sensor payload.

    ``payload`` is the base64 text from the envelope (raw bytes are accepted
    as already decoded). Returns ``None`` when the header is wrong or the
    declared records do not fit, so a batch is never half decoded.
    """
    buffer = _b64decode(payload)
    if buffer is None:
        return None

    if len(buffer) < DATA_HEADER_SIZE:
        logger.error(f"Data payload too short for header: {len(buffer)} bytes")
        return None

    if buffer[0] != DATA_MAGIC:
        logger.error(f"Invalid header 0x{buffer[0]:02X}, expected 0x{DATA_MAGIC:02X}")
        return None

    size = buffer[1]
    count = buffer[2]

    if count and size < DATA_RECORD_SIZE:
        logger.error(f"Record size {size} smaller than layout size {DATA_RECORD_SIZE}")
        return None

    end = DATA_HEADER_SIZE + (count - 1) * size + DATA_RECORD_SIZE if count else 0
    if end > len(buffer):
        logger.error(
            f"Data payload truncated: {count} records of {size} bytes "
            f"need {end} bytes, got {len(buffer)}"
        )
        return None

    records = []
    for index in range(count):
        raw = read_fields(buffer, DATA_RECORD_LAYOUT, DATA_HEADER_SIZE + index * size)
        records.append(
            DataRecord(
                log_ts=raw["log_ts"],
                la=raw["la"] * COORD_SCALE,
                lg=raw["lg"] * COORD_SCALE,
                tmp=raw["tmp"] * TEMPERATURE_SCALE,
                tiltx=raw["tiltx"],
                tilty=raw["tilty"],
                tiltz=raw["tiltz"],
                corev=raw["corev"] * VOLTAGE_SCALE,
                liionv=raw["liionv"] * VOLTAGE_SCALE,
            )
        )

    return records


def decode_notify(payload: Union[str, bytes, None]) -> Optional[NotifyRecord]:
    """Decode an engineering report. Lengths other than 92 or 100 yield ``None``."""
    buffer = _b64decode(payload)
    if buffer is None:
        return None

    if len(buffer) == NOTIFY_BASE_SIZE:
        layout = NOTIFY_LAYOUT
    elif len(buffer) == NOTIFY_EXTENDED_SIZE:
        layout = NOTIFY_LAYOUT + NOTIFY_EXTENDED_TAIL
    else:
        logger.warning(f"Unrecognized notify payload length {len(buffer)}")
        return None

    raw = read_fields(buffer, layout)

    gnssft = raw["gnssft"]
    cn_no = raw["cn_no"]
    cn_total = raw["cn_total"]

    return NotifyRecord(
        gnssft=(
            FIX_TIME_UNAVAILABLE_VALUE
            if gnssft == FIX_TIME_UNAVAILABLE
            else gnssft / MS_PER_SECOND
        ),
        txtime=raw["txtime"] / MS_PER_SECOND,
        solar_v=raw["solar_v"] * SOLAR_VOLTAGE_SCALE,
        ax=raw["ax"],
        ay=raw["ay"],
        az=raw["az"],
        gx=raw["gx"],
        gy=raw["gy"],
        gz=raw["gz"],
        cn_no=cn_no,
        cn_total=cn_total,
        cn_max=raw["cn_max"],
        cn_min=raw["cn_min"],
        cn_avg=cn_total / cn_no if cn_no > 0 else 0,
        csp=raw["csp"],
        csq=raw["csq"],
        bat_src=raw["bat_src"],
        wakeup=raw["wakeup"],
        wwan_t=raw["wwan_t"] / MS_PER_SECOND,
        cpin_t=raw["cpin_t"] / MS_PER_SECOND,
        reg_t=raw["reg_t"] / MS_PER_SECOND,
        ack_t=raw["ack_t"] / MS_PER_SECOND,
        fw_ver=format_firmware_version(raw["fw_ver"]),
        next_t=raw["next_t"] * MS_PER_SECOND,
        crsp=raw.get("crsp"),
        crsq=raw.get("crsq"),
    )
