"""Identity endpoints: sign-up, confirmation, sign-in, current user, sign-out."""
import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_bearer_token, get_current_user, get_settings
from core.config import Settings
from models.auth_session import AuthSession
from models.user import User
from schemas.auth import AuthResponse, Credentials, SessionResponse, UserResponse
from services import auth_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _session_response(user: User, session: AuthSession) -> SessionResponse:
    return SessionResponse(
        access_token=session.token,
        expires_at=session.expires_at,
        user=UserResponse.model_validate(user),
    )


@router.post("/signup", response_model=AuthResponse, status_code=201)
async def sign_up(
    data: Credentials,
    db: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> AuthResponse:
    """
    Create an account.

    While email confirmation is required, the response carries no session and
    the confirmation link is logged (no mail is sent).
    """
    try:
        user = await auth_service.sign_up(
            db,
            data.email,
            data.password,
            require_confirmation=settings.require_email_confirmation,
        )
    except auth_service.EmailAlreadyRegisteredError:
        raise HTTPException(status_code=409, detail="Email already registered") from None

    if user.confirmation_token is not None:
        logger.info(
            "Confirmation link for %s: %s",
            user.email,
            auth_service.confirmation_link(settings.site_url, user.confirmation_token),
        )
        return AuthResponse(user=UserResponse.model_validate(user), session=None)

    session = await auth_service.create_session(
        db, user, timedelta(hours=settings.session_duration_hours),
    )
    return AuthResponse(
        user=UserResponse.model_validate(user),
        session=_session_response(user, session),
    )


@router.get("/confirm", response_model=UserResponse)
async def confirm_email(
    token: str = Query(min_length=1),
    db: AsyncSession = Depends(get_async_session),
) -> UserResponse:
    """Confirm the email address that received this token."""
    try:
        user = await auth_service.confirm_email(db, token)
    except auth_service.InvalidConfirmationTokenError:
        raise HTTPException(status_code=400, detail="Invalid confirmation token") from None
    return UserResponse.model_validate(user)


@router.post("/token", response_model=AuthResponse)
async def sign_in(
    data: Credentials,
    db: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> AuthResponse:
    """Exchange email and password for a session."""
    try:
        user, session = await auth_service.sign_in(
            db,
            data.email,
            data.password,
            duration=timedelta(hours=settings.session_duration_hours),
        )
    except auth_service.InvalidCredentialsError:
        raise HTTPException(status_code=401, detail="Invalid email or password") from None
    except auth_service.EmailNotConfirmedError:
        raise HTTPException(status_code=403, detail="Email not confirmed") from None
    return AuthResponse(
        user=UserResponse.model_validate(user),
        session=_session_response(user, session),
    )


@router.get("/user", response_model=UserResponse)
async def get_user(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the user of the bearer token."""
    return UserResponse.model_validate(current_user)


@router.post("/logout", status_code=204)
async def sign_out(
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_async_session),
) -> None:
    """Revoke the bearer token."""
    await auth_service.sign_out(db, token)
