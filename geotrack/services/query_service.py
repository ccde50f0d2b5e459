import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import ValidationError
from redis.exceptions import RedisError

from geotrack.config.settings import get_settings
from geotrack.core.exceptions import QueryError
from geotrack.core.topics import MessageKind
from geotrack.models.query import DataEntry, NotifyEntry, QueryResult, QueryWindow
from geotrack.models.telemetry import FieldRow
from geotrack.storage.telemetry_store import get_telemetry_store

logger = logging.getLogger(__name__)

RAW_MESSAGE_FIELD = "message"


def pivot(rows: list[FieldRow]) -> list[dict[str, Any]]:
    """Fold field-per-row results into one record per (time, device, type).

    Output keeps the order in which each record's first row appears.
    """
    records: dict[tuple[int, str, str], dict[str, Any]] = {}
    for row in rows:
        record = records.get(row.point_key)
        if record is None:
            record = {
                "_time": row.time,
                "_measurement": row.measurement,
                "device_id": row.device_id,
                "type": row.type,
            }
            records[row.point_key] = record
        record[row.field] = row.value
    return list(records.values())


def _timestamp(time_ns: int) -> datetime:
    seconds, remainder = divmod(time_ns, 1_000_000_000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(
        microsecond=remainder // 1000
    )


class QueryEngine:
    def __init__(self):
        self.store = get_telemetry_store()
        self.settings = get_settings()

    def classify(self, record: dict[str, Any]) -> Optional[Union[DataEntry, NotifyEntry]]:
        kind = record.get("type")
        fields = dict(record)
        fields["time"] = _timestamp(record["_time"])

        try:
            if kind == MessageKind.DATA.value and record.get("log_ts") is not None:
                return DataEntry.model_validate(fields)
            if kind == MessageKind.NOTIFY.value and record.get("gnssft") is not None:
                return NotifyEntry.model_validate(fields)
        except ValidationError as e:
            logger.warning(f"Skipping unreadable {kind} row for {record.get('device_id')}: {e}")
        return None

    async def query(self, window: QueryWindow) -> QueryResult:
        start, stop = window.bounds()
        limit = self.settings.query_row_limit

        try:
            rows = await self.store.query_rows(
                self.settings.telemetry_measurement,
                start,
                stop,
                exclude_fields=(RAW_MESSAGE_FIELD,),
                max_points=limit,
            )
        except RedisError as e:
            logger.error(f"Telemetry query error: {e}")
            raise QueryError(str(e)) from e

        records = pivot(rows)
        if len(records) > limit:
            logger.info(f"Query returned {len(records)} rows, truncating to {limit}")
            records = records[:limit]

        result = QueryResult()
        for record in records:
            entry = self.classify(record)
            if isinstance(entry, DataEntry):
                result.data.append(entry)
            elif isinstance(entry, NotifyEntry):
                result.notify.append(entry)

        logger.info(
            f"Query {window.cache_key()} complete: "
            f"{len(result.data)} data, {len(result.notify)} notify"
        )
        return result


_engine = QueryEngine()


def get_query_engine() -> QueryEngine:
    return _engine
