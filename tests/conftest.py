import base64
import json
import struct
import uuid

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from fastapi.testclient import TestClient

from geotrack.config.settings import get_settings
from geotrack.core.redis_client import set_redis_client
from geotrack.main import app
from geotrack.storage.metadata_store import get_metadata_store
from geotrack.storage.query_cache import get_query_cache
from geotrack.storage.telemetry_store import get_telemetry_store

DATA_RECORD_FORMAT = "<IiihbbbBB"
NOTIFY_BASE_FORMAT = "<iII6f8i6I"


@pytest.fixture(scope="function", autouse=True)
def redis(monkeypatch):
    """Fresh in-memory Redis for every test."""
    fake = FakeAsyncRedis(server=FakeServer())
    set_redis_client(fake)
    for store in (get_telemetry_store(), get_metadata_store(), get_query_cache()):
        monkeypatch.setattr(store, "redis", fake)
    monkeypatch.setattr(get_settings(), "mqtt_enabled", False)

    yield fake

    set_redis_client(None)


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def unique_id():
    return uuid.uuid4().hex[:8]


def pack_data_payload(records, size=19, magic=0xA5, count=None):
    body = b"".join(
        struct.pack(DATA_RECORD_FORMAT, *record).ljust(size, b"\x00")
        for record in records
    )
    header = bytes([magic, size, len(records) if count is None else count, 0])
    return base64.b64encode(header + body).decode()


def pack_notify_payload(
    gnssft=12345,
    cn_no=4,
    cn_total=100,
    fw_ver=0x01020300,
    crsp=None,
    crsq=None,
):
    raw = struct.pack(
        NOTIFY_BASE_FORMAT,
        gnssft,
        5000,
        3300,
        0.5,
        -0.25,
        1.0,
        2.0,
        3.5,
        -4.0,
        cn_no,
        cn_total,
        40,
        10,
        -80,
        20,
        1,
        2,
        1500,
        200,
        3000,
        400,
        fw_ver,
        60,
    )
    if crsp is not None:
        raw += struct.pack("<ii", crsp, crsq)
    return base64.b64encode(raw).decode()


def make_envelope(**body):
    envelope = {
        "msg": {"id": 7, "ts": 1700000000, "imei": "353500725489142"},
        "net": {"oper": "46692", "ip": "10.0.0.8"},
        "remark": "unit-test",
    }
    envelope.update(body)
    return json.dumps(envelope)


@pytest.fixture
def data_payload():
    return pack_data_payload


@pytest.fixture
def notify_payload():
    return pack_notify_payload


@pytest.fixture
def envelope():
    return make_envelope
