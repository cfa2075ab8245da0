"""FastAPI application entry point."""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routers import auth, bookmarks, health, realtime
from core.config import get_settings
from core.redis import RedisClient, set_redis_client
from db.session import create_tables
from services.change_feed import ChangeFeed, set_change_feed

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # noqa: ARG001
    """Connect Redis and start the change feed; tear both down on shutdown."""
    settings = get_settings()
    if settings.dev_mode:
        await create_tables()
        logger.warning("Dev mode enabled: authentication is bypassed")

    redis_client = RedisClient(settings.redis_url, enabled=settings.redis_enabled)
    await redis_client.connect()
    set_redis_client(redis_client)

    feed = ChangeFeed(redis_client, queue_size=settings.realtime_queue_size)
    await feed.start()
    set_change_feed(feed)
    try:
        yield
    finally:
        await feed.stop()
        set_change_feed(None)
        await redis_client.close()
        set_redis_client(None)


app = FastAPI(
    title="Smart Bookmark API",
    description="Personal bookmarks with per-user authorization and a live change feed.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(bookmarks.router)
app.include_router(realtime.router)
