import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from geotrack.api import devices, messages
from geotrack.config.settings import get_settings
from geotrack.core.connection import get_connection_status
from geotrack.core.exceptions import QueryError
from geotrack.core.redis_client import close_redis_client, ping_redis
from geotrack.services.mqtt_service import get_mqtt_subscriber

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if not await ping_redis():
        logger.warning("Starting without Redis; writes and queries will fail until it is reachable")
    subscriber = get_mqtt_subscriber()
    if settings.mqtt_enabled:
        subscriber.start(asyncio.get_running_loop())
    logger.info("GeoTrack started")
    yield
    subscriber.stop()
    await close_redis_client()
    logger.info("GeoTrack stopped")


app = FastAPI(title="GeoTrack", version="1.0.0", lifespan=lifespan)

app.include_router(messages.router, prefix="/messages", tags=["messages"])
app.include_router(devices.router, prefix="/devices", tags=["devices"])


@app.get("/health")
async def health_check():
    redis_up = await ping_redis()
    return {
        "status": "healthy" if redis_up else "degraded",
        "service": "geotrack",
        "redis": "up" if redis_up else "down",
    }


@app.get("/mqtt-status")
async def mqtt_status():
    status = get_connection_status()
    return {"connected": status.connected, "state": status.state.value}


@app.exception_handler(QueryError)
async def query_error_handler(request: Request, exc: QueryError):
    return JSONResponse(
        status_code=500,
        content={"error": "Failed to query telemetry store", "details": str(exc)},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(KeyError)
async def key_error_handler(request: Request, exc: KeyError):
    return JSONResponse(status_code=404, content={"error": str(exc)})
