import logging
import time
from datetime import datetime
from typing import Optional

from pydantic import ValidationError

from geotrack.config.settings import get_settings
from geotrack.core.redis_client import get_redis_client
from geotrack.models.telemetry import FieldRow, StoredPoint

logger = logging.getLogger(__name__)

NS_PER_US = 1000
READ_PAGE_SIZE = 500


def _to_ns(value: datetime) -> int:
    return int(value.timestamp()) * 1_000_000_000 + value.microsecond * 1000


class TelemetryStore:
    """Time-series storage on a Redis sorted set.

    Each field of a point is kept as its own ``FieldRow``, scored by the
    point time in microseconds, so reads return field-per-row results that
    callers pivot back into records.
    """

    def __init__(self):
        self.redis = None
        self.settings = get_settings()

    async def initialize(self):
        if not self.redis:
            self.redis = await get_redis_client()

    def _key(self, measurement: str) -> str:
        return f"ts:{measurement}"

    @staticmethod
    def _rows(point: StoredPoint) -> list[FieldRow]:
        return [
            FieldRow(
                time=point.time_ns,
                device_id=point.tags["device_id"],
                type=point.tags["type"],
                measurement=point.measurement,
                field=field,
                value=value,
            )
            for field, value in point.fields.items()
        ]

    async def write_points(self, points: list[StoredPoint]) -> int:
        """Write points in one pipeline, in the order given."""
        await self.initialize()

        if not points:
            return 0

        cutoff_us = (time.time_ns() // NS_PER_US) - (
            self.settings.telemetry_retention_seconds * 1_000_000
        )
        measurements = set()

        async with self.redis.pipeline(transaction=False) as pipe:
            for point in points:
                key = self._key(point.measurement)
                measurements.add(key)
                score = point.time_ns // NS_PER_US
                pipe.zadd(
                    key, {row.model_dump_json(): score for row in self._rows(point)}
                )

            for key in measurements:
                pipe.zremrangebyscore(key, "-inf", f"({cutoff_us}")

            await pipe.execute()

        return len(points)

    async def query_rows(
        self,
        measurement: str,
        start: datetime,
        stop: datetime,
        exclude_fields: tuple[str, ...] = (),
        max_points: Optional[int] = None,
    ) -> list[FieldRow]:
        """Return field rows with ``start <= time < stop`` in time order.

        Reads page by page and stops once ``max_points`` points are complete,
        so a wide window costs no more than the points it returns.
        """
        await self.initialize()

        key = self._key(measurement)
        start_us = _to_ns(start) // NS_PER_US
        stop_us = _to_ns(stop) // NS_PER_US

        rows: list[FieldRow] = []
        points: set[tuple[int, str, str]] = set()
        offset = 0

        while True:
            page = await self.redis.zrangebyscore(
                key, start_us, f"({stop_us}", start=offset, num=READ_PAGE_SIZE
            )
            for member in page:
                try:
                    row = FieldRow.model_validate_json(member)
                except ValidationError as e:
                    logger.warning(f"Skipping unreadable row in {key}: {e}")
                    continue
                if row.field in exclude_fields:
                    continue
                if row.point_key not in points:
                    if max_points is not None and len(points) >= max_points:
                        return rows
                    points.add(row.point_key)
                rows.append(row)

            if len(page) < READ_PAGE_SIZE:
                return rows
            offset += len(page)


_store = TelemetryStore()


def get_telemetry_store() -> TelemetryStore:
    return _store
