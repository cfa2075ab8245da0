"""Read-only records exchanged with the backend."""
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class AuthEvent(Enum):
    """Session transitions reported to session-change listeners."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    SIGNED_UP = "SIGNED_UP"


class ChangeKind(Enum):
    """Change kinds a feed subscription can ask for."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ALL = "*"


class User(BaseModel):
    """The identity behind a session. Owned by the identity provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None
    email_confirmed_at: datetime | None = None
    created_at: datetime | None = None


class Session(BaseModel):
    """Proof of authentication for one user, valid until expires_at."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: User

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once expires_at has passed."""
        now = now or datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return expires_at <= now


class AuthResponse(BaseModel):
    """Sign-up/sign-in result; session is None while email confirmation is pending."""

    model_config = ConfigDict(frozen=True)

    user: User
    session: Session | None = None


class Bookmark(BaseModel):
    """A stored bookmark as returned by the backend."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    url: str
    user_id: str
    created_at: datetime


class BookmarkDraft(BaseModel):
    """Fields sent when inserting a bookmark."""

    title: str
    url: str
    user_id: str


class ChangeNotification(BaseModel):
    """A change-feed signal. Consumers re-read rather than apply the payload."""

    table: str
    type: str
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = None
    commit_timestamp: str | None = None
