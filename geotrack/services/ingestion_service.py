import json
import logging
import time
from typing import Optional, Union

from pydantic import ValidationError
from redis.exceptions import RedisError

from geotrack.config.settings import get_settings
from geotrack.core.codec import decode_data_batch, decode_notify
from geotrack.core.topics import MessageKind, route
from geotrack.models.telemetry import (
    DataRecord,
    Envelope,
    FieldValue,
    NotifyRecord,
    StoredPoint,
)
from geotrack.storage.telemetry_store import get_telemetry_store

logger = logging.getLogger(__name__)

ENGINEERING_NOTIFY = "eng"


def _put(fields: dict[str, FieldValue], name: str, value: Optional[FieldValue]):
    if value is not None:
        fields[name] = value


def build_data_points(
    device_id: str,
    envelope: Envelope,
    records: list[DataRecord],
    measurement: str,
    time_ns: int,
) -> list[StoredPoint]:
    """One point per record, timestamps increasing in on-wire order."""
    points = []
    for index, record in enumerate(records):
        fields: dict[str, FieldValue] = {}
        _put(fields, "id", envelope.msg.id)
        _put(fields, "ts", envelope.msg.ts)
        _put(fields, "imei", envelope.msg.imei or device_id)
        _put(fields, "oper", envelope.net.oper)
        _put(fields, "ip", envelope.net.ip)
        _put(fields, "remark", envelope.remark)
        fields.update(record.model_dump())

        points.append(
            StoredPoint(
                measurement=measurement,
                tags={"device_id": device_id, "type": MessageKind.DATA.value},
                fields=fields,
                time_ns=time_ns + index,
            )
        )
    return points


def build_notify_point(
    device_id: str,
    envelope: Envelope,
    record: NotifyRecord,
    measurement: str,
    time_ns: int,
) -> StoredPoint:
    fields: dict[str, FieldValue] = {}
    _put(fields, "id", envelope.msg.id)
    _put(fields, "ts", envelope.msg.ts)
    _put(fields, "oper", envelope.net.oper)
    _put(fields, "ip", envelope.net.ip)
    fields.update(record.model_dump(exclude_none=True))

    return StoredPoint(
        measurement=measurement,
        tags={"device_id": device_id, "type": MessageKind.NOTIFY.value},
        fields=fields,
        time_ns=time_ns,
    )


class IngestionPipeline:
    def __init__(self):
        self.store = get_telemetry_store()
        self.settings = get_settings()

    def parse_envelope(self, payload: Union[str, bytes]) -> Optional[Envelope]:
        try:
            return Envelope.model_validate(json.loads(payload))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"JSON parse error: {e}")
        except ValidationError as e:
            logger.error(f"Malformed envelope: {e}")
        return None

    def build_points(
        self, topic: str, envelope: Envelope, time_ns: Optional[int] = None
    ) -> list[StoredPoint]:
        device_id, kind = route(topic)
        if not device_id or kind is None:
            logger.debug(f"Ignoring message on {topic}")
            return []

        time_ns = time_ns if time_ns is not None else time.time_ns()
        measurement = self.settings.telemetry_measurement

        if kind == MessageKind.DATA:
            records = decode_data_batch(envelope.data)
            if records is None:
                logger.error(f"Dropping data envelope from {device_id}: undecodable batch")
                return []
            return build_data_points(device_id, envelope, records, measurement, time_ns)

        if envelope.notify != ENGINEERING_NOTIFY:
            logger.debug(f"Ignoring notify subtype {envelope.notify!r} from {device_id}")
            return []

        record = decode_notify(envelope.value)
        if record is None:
            return []
        return [build_notify_point(device_id, envelope, record, measurement, time_ns)]

    async def handle_message(self, topic: str, payload: Union[str, bytes]) -> int:
        """Decode one transport message and write its points. Returns points written."""
        logger.info(f"Received message on {topic}")

        envelope = self.parse_envelope(payload)
        if envelope is None:
            return 0

        points = self.build_points(topic, envelope)
        if not points:
            return 0

        try:
            written = await self.store.write_points(points)
        except RedisError as e:
            logger.error(f"Telemetry write error for {topic}: {e}")
            return 0

        logger.info(f"Wrote {written} point(s) for {topic}")
        return written


_pipeline = IngestionPipeline()


def get_ingestion_pipeline() -> IngestionPipeline:
    return _pipeline
