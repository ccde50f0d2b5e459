"""
Envelope decoding and point ingestion tests.
"""

import json
import time
from datetime import datetime, timedelta, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import make_envelope, pack_data_payload, pack_notify_payload

from geotrack.models.telemetry import FieldRow
from geotrack.services.ingestion_service import IngestionPipeline


@pytest.fixture
def pipeline():
    return IngestionPipeline()


async def stored_rows(pipeline):
    now = datetime.now(timezone.utc)
    return await pipeline.store.query_rows(
        "device_messages", now - timedelta(minutes=5), now + timedelta(seconds=1)
    )


def test_single_record_envelope_builds_one_point(pipeline):
    """Scenario: one record with la=25.0, lg=121.0 from DEV1."""
    body = make_envelope(
        data=pack_data_payload([(600, 25000000, 121000000, 2100, 1, 2, 3, 36, 40)])
    )

    points = pipeline.build_points("adv/DEV1/data", pipeline.parse_envelope(body))

    assert len(points) == 1
    point = points[0]
    assert point.measurement == "device_messages"
    assert point.tags == {"device_id": "DEV1", "type": "data"}
    assert point.fields["la"] == 25.0
    assert point.fields["lg"] == 121.0
    assert point.fields["id"] == 7
    assert point.fields["ts"] == 1700000000
    assert point.fields["imei"] == "353500725489142"
    assert point.fields["oper"] == "46692"
    assert point.fields["remark"] == "unit-test"


def test_imei_falls_back_to_device_id(pipeline):
    body = json.dumps(
        {
            "msg": {"id": "3", "ts": "1700000000"},
            "net": {"oper": 46692, "ip": "10.0.0.8"},
            "data": pack_data_payload([(1, 0, 0, 0, 0, 0, 0, 0, 0)]),
        }
    )

    points = pipeline.build_points("adv/DEV9/data", pipeline.parse_envelope(body))

    assert points[0].fields["imei"] == "DEV9"
    assert points[0].fields["id"] == 3
    assert points[0].fields["oper"] == "46692"


def test_batch_points_keep_wire_order(pipeline):
    body = make_envelope(
        data=pack_data_payload(
            [(log_ts, 0, 0, 0, 0, 0, 0, 0, 0) for log_ts in (30, 10, 20)]
        )
    )

    points = pipeline.build_points(
        "adv/DEV1/data", pipeline.parse_envelope(body), time_ns=1_000
    )

    assert [p.fields["log_ts"] for p in points] == [30, 10, 20]
    assert [p.time_ns for p in points] == [1_000, 1_001, 1_002]


def test_notify_point_includes_crs_only_when_present(pipeline):
    base = make_envelope(notify="eng", value=pack_notify_payload())
    extended = make_envelope(notify="eng", value=pack_notify_payload(crsp=-90, crsq=11))

    base_point = pipeline.build_points("adv/DEV1/notify", pipeline.parse_envelope(base))[0]
    extended_point = pipeline.build_points(
        "adv/DEV1/notify", pipeline.parse_envelope(extended)
    )[0]

    assert base_point.tags == {"device_id": "DEV1", "type": "notify"}
    assert "crsp" not in base_point.fields
    assert "crsq" not in base_point.fields
    assert extended_point.fields["crsp"] == -90
    assert extended_point.fields["crsq"] == 11
    assert extended_point.fields["fw_ver"] == "1.2.3"
    assert "imei" not in extended_point.fields


def test_notify_other_subtype_is_ignored(pipeline):
    body = make_envelope(notify="status", value=pack_notify_payload())

    assert pipeline.build_points("adv/DEV1/notify", pipeline.parse_envelope(body)) == []


def test_unknown_kind_is_ignored(pipeline):
    body = make_envelope(data=pack_data_payload([(1, 0, 0, 0, 0, 0, 0, 0, 0)]))

    assert pipeline.build_points("adv/DEV1/config", pipeline.parse_envelope(body)) == []


def test_malformed_json_is_dropped(pipeline):
    assert pipeline.parse_envelope("{not json") is None
    assert pipeline.parse_envelope(b"\xff\xfe") is None


@pytest.mark.asyncio
async def test_handle_message_writes_points(pipeline):
    body = make_envelope(
        data=pack_data_payload(
            [
                (600, 25000000, 121000000, 2100, 1, 2, 3, 36, 40),
                (660, 25000100, 121000100, 2110, 1, 2, 3, 36, 40),
            ]
        )
    )

    written = await pipeline.handle_message("adv/DEV1/data", body.encode())

    assert written == 2
    rows = await stored_rows(pipeline)
    log_ts_rows = [row for row in rows if row.field == "log_ts"]
    assert [row.value for row in log_ts_rows] == [600, 660]
    assert all(row.device_id == "DEV1" and row.type == "data" for row in rows)


@pytest.mark.asyncio
async def test_handle_message_drops_bad_header(pipeline):
    body = make_envelope(data=pack_data_payload([(1, 0, 0, 0, 0, 0, 0, 0, 0)], magic=0x00))

    assert await pipeline.handle_message("adv/DEV1/data", body) == 0
    assert await stored_rows(pipeline) == []


@pytest.mark.asyncio
async def test_handle_message_drops_unrecognized_notify_length(pipeline):
    body = make_envelope(notify="eng", value="AAAA")

    assert await pipeline.handle_message("adv/DEV1/notify", body) == 0
    assert await stored_rows(pipeline) == []


@pytest.mark.asyncio
async def test_handle_message_drops_malformed_json(pipeline):
    assert await pipeline.handle_message("adv/DEV1/data", "not json") == 0


@pytest.mark.asyncio
async def test_write_failure_is_contained(pipeline, monkeypatch):
    async def failing_write(points):
        raise RedisConnectionError("store unreachable")

    monkeypatch.setattr(pipeline.store, "write_points", failing_write)
    body = make_envelope(data=pack_data_payload([(1, 0, 0, 0, 0, 0, 0, 0, 0)]))

    assert await pipeline.handle_message("adv/DEV1/data", body) == 0


@pytest.mark.asyncio
async def test_retention_trims_old_rows(pipeline):
    old_ns = time.time_ns() - (pipeline.settings.telemetry_retention_seconds + 60) * 10**9
    body = make_envelope(data=pack_data_payload([(1, 0, 0, 0, 0, 0, 0, 0, 0)]))
    old_points = pipeline.build_points(
        "adv/DEV1/data", pipeline.parse_envelope(body), time_ns=old_ns
    )
    await pipeline.store.write_points(old_points)

    await pipeline.handle_message("adv/DEV2/data", body)

    members = await pipeline.store.redis.zrange("ts:device_messages", 0, -1)
    devices = {FieldRow.model_validate_json(member).device_id for member in members}
    assert devices == {"DEV2"}


def test_fractional_and_suffixed_header_numbers_are_truncated(pipeline):
    body = json.dumps(
        {
            "msg": {"id": "12abc", "ts": 1700000000.5},
            "net": {"oper": "46692"},
            "data": pack_data_payload([(1, 0, 0, 0, 0, 0, 0, 0, 0)]),
        }
    )

    points = pipeline.build_points("adv/DEV1/data", pipeline.parse_envelope(body))

    assert points[0].fields["id"] == 12
    assert points[0].fields["ts"] == 1700000000


def test_unreadable_header_numbers_are_omitted(pipeline):
    body = json.dumps(
        {
            "msg": {"id": {"seq": 1}, "ts": "soon"},
            "data": pack_data_payload([(1, 0, 0, 0, 0, 0, 0, 0, 0)]),
        }
    )

    points = pipeline.build_points("adv/DEV1/data", pipeline.parse_envelope(body))

    assert len(points) == 1
    assert "id" not in points[0].fields
    assert "ts" not in points[0].fields


@pytest.mark.asyncio
async def test_fractional_timestamp_envelope_is_written(pipeline):
    body = make_envelope(data=pack_data_payload([(1, 0, 0, 0, 0, 0, 0, 0, 0)]))
    body = body.replace('"ts": 1700000000', '"ts": 1700000000.5')

    assert await pipeline.handle_message("adv/DEV1/data", body) == 1
    rows = await stored_rows(pipeline)
    assert [row.value for row in rows if row.field == "ts"] == [1700000000]
