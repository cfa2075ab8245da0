"""
Identity provider: sign-up, email confirmation, sign-in, sign-out, token lookup.

Passwords are hashed with bcrypt. Sessions are opaque random tokens stored
server-side with an expiry, revoked on sign-out.
"""
import logging
import secrets
from datetime import UTC, datetime, timedelta

import bcrypt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.auth_session import AuthSession
from models.base import utc_now
from models.user import User

logger = logging.getLogger(__name__)


class EmailAlreadyRegisteredError(Exception):
    """Raised when signing up with an email that already has an account."""


class InvalidCredentialsError(Exception):
    """Raised when the email/password pair does not match an account."""


class EmailNotConfirmedError(Exception):
    """Raised when signing in before the email address has been confirmed."""


class InvalidConfirmationTokenError(Exception):
    """Raised when a confirmation token is unknown or already used."""


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def generate_token() -> str:
    """Generate a cryptographically secure token."""
    return secrets.token_hex(32)


def _as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo; treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def confirmation_link(site_url: str, token: str) -> str:
    """Build the link mailed to a new user."""
    return f"{site_url.rstrip('/')}/auth/confirm?token={token}"


async def sign_up(
    db: AsyncSession,
    email: str,
    password: str,
    *,
    require_confirmation: bool,
) -> User:
    """
    Create a user.

    With require_confirmation the account starts unconfirmed and carries a
    one-time confirmation token; otherwise it is confirmed immediately.
    """
    existing = await db.scalar(select(User).where(User.email == email))
    if existing is not None:
        raise EmailAlreadyRegisteredError(email)

    user = User(email=email, password_hash=hash_password(password))
    if require_confirmation:
        user.confirmation_token = generate_token()
    else:
        user.email_confirmed_at = utc_now()
    db.add(user)
    await db.flush()
    logger.info("user_signed_up", extra={"user_id": str(user.id)})
    return user


async def confirm_email(db: AsyncSession, token: str) -> User:
    """Mark the email of the user holding this confirmation token as confirmed."""
    user = await db.scalar(select(User).where(User.confirmation_token == token))
    if user is None:
        raise InvalidConfirmationTokenError(token)
    user.email_confirmed_at = utc_now()
    user.confirmation_token = None
    await db.flush()
    logger.info("email_confirmed", extra={"user_id": str(user.id)})
    return user


async def create_session(
    db: AsyncSession,
    user: User,
    duration: timedelta,
) -> AuthSession:
    """Issue a new session for a user."""
    session = AuthSession(
        user_id=user.id,
        token=generate_token(),
        expires_at=utc_now() + duration,
    )
    db.add(session)
    await db.flush()
    return session


async def sign_in(
    db: AsyncSession,
    email: str,
    password: str,
    *,
    duration: timedelta,
) -> tuple[User, AuthSession]:
    """Verify credentials and issue a session."""
    user = await db.scalar(select(User).where(User.email == email))
    if user is None or not verify_password(password, user.password_hash):
        logger.info("sign_in_failed", extra={"reason": "invalid_credentials"})
        raise InvalidCredentialsError(email)
    if user.email_confirmed_at is None:
        logger.info("sign_in_failed", extra={"reason": "email_not_confirmed"})
        raise EmailNotConfirmedError(email)

    session = await create_session(db, user, duration)
    logger.info("user_signed_in", extra={"user_id": str(user.id)})
    return user, session


async def sign_out(db: AsyncSession, token: str) -> None:
    """Revoke a session token. Unknown tokens are ignored."""
    session = await db.scalar(select(AuthSession).where(AuthSession.token == token))
    if session is None:
        return
    session.revoked = True
    await db.flush()
    logger.info("user_signed_out", extra={"user_id": str(session.user_id)})


async def get_user_for_token(db: AsyncSession, token: str) -> User | None:
    """Return the user of a live session, or None if the token is unknown, revoked or expired."""
    session = await db.scalar(select(AuthSession).where(AuthSession.token == token))
    if session is None or session.revoked:
        return None
    if _as_utc(session.expires_at) <= datetime.now(UTC):
        return None
    return await db.get(User, session.user_id)


async def get_or_create_dev_user(db: AsyncSession, email: str) -> User:
    """Return the fixed confirmed user that dev mode authenticates every request as."""
    user = await db.scalar(select(User).where(User.email == email))
    if user is None:
        user = User(
            email=email,
            password_hash=hash_password(generate_token()),
            email_confirmed_at=utc_now(),
        )
        db.add(user)
        await db.flush()
    return user
