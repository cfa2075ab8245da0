"""Pydantic schemas for bookmark endpoints."""
from datetime import datetime
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, TypeAdapter, field_validator


MAX_TITLE_LENGTH = 500

_http_url = TypeAdapter(AnyHttpUrl)


def validate_absolute_url(url: str) -> str:
    """
    Validate that the URL is an absolute http(s) URL and return it unchanged.

    The URL is stored exactly as submitted; pydantic's URL types are only used
    for validation because they normalize (e.g. append a trailing slash).
    """
    url = url.strip()
    _http_url.validate_python(url)
    return url


def validate_title(title: str) -> str:
    """Strip surrounding whitespace and reject empty titles."""
    title = title.strip()
    if not title:
        raise ValueError("Title must not be empty")
    return title


class BookmarkCreate(BaseModel):
    """
    Schema for creating a new bookmark.

    user_id is optional; when given it must match the authenticated user.
    """

    title: str = Field(max_length=MAX_TITLE_LENGTH)
    url: str
    user_id: UUID | None = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        """Reject blank titles."""
        return validate_title(v)

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str) -> str:
        """Require an absolute URL."""
        return validate_absolute_url(v)


class BookmarkUpdate(BaseModel):
    """Schema for updating an existing bookmark."""

    title: str | None = Field(default=None, max_length=MAX_TITLE_LENGTH)
    url: str | None = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str | None) -> str | None:
        """Reject blank titles if provided."""
        if v is None:
            return None
        return validate_title(v)

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str | None) -> str | None:
        """Require an absolute URL if provided."""
        if v is None:
            return None
        return validate_absolute_url(v)


class BookmarkResponse(BaseModel):
    """Schema for bookmark responses and change feed records."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    url: str
    user_id: UUID
    created_at: datetime
