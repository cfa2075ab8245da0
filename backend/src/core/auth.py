"""Bearer-token authentication dependencies."""
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings, get_settings
from db.session import get_async_session, get_session_factory
from models.user import User
from services import auth_service

logger = logging.getLogger(__name__)

DEV_USER_EMAIL = "dev@localhost"

bearer_scheme = HTTPBearer(auto_error=False)


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Extract the bearer token, 401 if missing."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def _resolve_user(
    db: AsyncSession,
    credentials: HTTPAuthorizationCredentials | None,
    settings: Settings,
) -> User:
    if settings.dev_mode:
        return await auth_service.get_or_create_dev_user(db, DEV_USER_EMAIL)

    token = get_bearer_token(credentials)
    user = await auth_service.get_user_for_token(db, token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> User:
    """
    Resolve the user of the bearer token.

    In dev mode every request is authenticated as a fixed development user.
    Raises 401 if the token is missing, unknown, revoked or expired.
    """
    return await _resolve_user(db, credentials, settings)


async def get_streaming_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> User:
    """
    Resolve the user like get_current_user, on a session closed before returning.

    The session is closed before the response starts, so a long-lived stream
    holds no pooled connection.
    """
    async with session_factory() as db:
        user = await _resolve_user(db, credentials, settings)
        await db.commit()
    return user
