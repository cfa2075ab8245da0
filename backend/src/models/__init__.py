"""SQLAlchemy models."""
from models.auth_session import AuthSession
from models.base import Base, TimestampMixin
from models.bookmark import Bookmark
from models.user import User

__all__ = ["AuthSession", "Base", "Bookmark", "TimestampMixin", "User"]
