from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query

from geotrack.config.settings import get_settings
from geotrack.models.query import QueryResult, QueryWindow
from geotrack.services.messages_service import get_messages_service

router = APIRouter()


@router.get("", response_model=QueryResult)
async def get_messages(
    range: Optional[str] = None,
    start: Optional[datetime] = Query(default=None, alias="from"),
    stop: Optional[datetime] = Query(default=None, alias="to"),
):
    window = QueryWindow(
        range=range or get_settings().query_default_range,
        start=start,
        stop=stop,
    )
    service = get_messages_service()
    return await service.get_messages(window)
