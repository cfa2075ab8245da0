"""Pydantic schemas for auth endpoints."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


MIN_PASSWORD_LENGTH = 6


class Credentials(BaseModel):
    """Email/password pair for sign-up and sign-in."""

    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=72)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Store addresses lowercased so sign-in is case-insensitive."""
        return v.lower()


class UserResponse(BaseModel):
    """Public view of a user."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    email_confirmed_at: datetime | None
    created_at: datetime


class SessionResponse(BaseModel):
    """An issued session: bearer token, expiry, and its user."""

    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserResponse


class AuthResponse(BaseModel):
    """
    Result of sign-up or sign-in.

    session is None after a sign-up that still awaits email confirmation.
    """

    user: UserResponse
    session: SessionResponse | None
