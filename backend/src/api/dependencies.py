"""FastAPI dependencies for injection."""
from core.auth import get_bearer_token, get_current_user, get_streaming_user
from core.config import get_settings
from db.session import get_async_session, get_session_factory
from services.change_feed import ChangeFeed, get_change_feed as _get_change_feed


async def get_change_feed() -> ChangeFeed:
    """Dependency returning the process-wide change feed."""
    return _get_change_feed()


__all__ = [
    "get_async_session",
    "get_bearer_token",
    "get_change_feed",
    "get_current_user",
    "get_session_factory",
    "get_settings",
    "get_streaming_user",
]
