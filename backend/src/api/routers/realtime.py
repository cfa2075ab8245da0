"""
Realtime change feed over Server-Sent Events.

A client opens `GET /realtime/{table}?filter=user_id=eq.<id>&event=*` and
receives one `change` event per committed mutation that matches. The caller's
ownership filter is always added, so a subscriber only ever hears about rows
it is allowed to read.
"""
import asyncio
import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from api.dependencies import get_change_feed, get_settings, get_streaming_user
from core.config import Settings
from models.user import User
from services.change_feed import (
    ChangeFeed,
    FeedSubscription,
    InvalidRowFilterError,
    RowFilter,
    parse_change_kinds,
    parse_row_filter,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])

# Subscribable tables and the column holding the owning user's id
OWNER_COLUMNS: dict[str, str] = {
    "bookmarks": "user_id",
}

KEEPALIVE = ": keepalive\n\n"


def format_sse(event: str, data: str) -> str:
    """Format one Server-Sent Event."""
    return f"event: {event}\ndata: {data}\n\n"


async def stream_changes(
    subscription: FeedSubscription,
    heartbeat_seconds: float,
) -> AsyncIterator[str]:
    """Yield SSE frames for a subscription until it closes or the client goes away."""
    try:
        yield format_sse(
            "subscribed",
            json.dumps({
                "table": subscription.table,
                "filters": [str(f) for f in subscription.filters],
                "events": sorted(kind.value for kind in subscription.kinds),
            }),
        )
        while True:
            try:
                event = await asyncio.wait_for(subscription.get(), timeout=heartbeat_seconds)
            except TimeoutError:
                yield KEEPALIVE
                continue
            if event is None:
                break
            yield format_sse("change", event.to_json())
    finally:
        subscription.close()
        logger.debug("realtime_stream_closed", extra={"table": subscription.table})


@router.get("/{table}")
async def subscribe_to_changes(
    table: str,
    row_filter: str | None = Query(
        default=None, alias="filter", description="Row filter, e.g. user_id=eq.<id>",
    ),
    events: list[str] = Query(
        default=["*"], alias="event", description="INSERT, UPDATE, DELETE or *",
    ),
    current_user: User = Depends(get_streaming_user),
    feed: ChangeFeed = Depends(get_change_feed),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """Stream change notifications for the caller's rows of a table."""
    owner_column = OWNER_COLUMNS.get(table)
    if owner_column is None:
        raise HTTPException(status_code=404, detail=f"Unknown table: '{table}'")

    try:
        filters = [parse_row_filter(row_filter)] if row_filter else []
        kinds = parse_change_kinds(events)
    except InvalidRowFilterError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    filters.append(RowFilter(column=owner_column, value=str(current_user.id)))

    subscription = feed.subscribe(table, filters, kinds)
    logger.info(
        "realtime_subscribed",
        extra={"table": table, "user_id": str(current_user.id)},
    )
    return StreamingResponse(
        stream_changes(subscription, settings.realtime_heartbeat_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
