"""
Service layer for bookmark operations.

Every query is scoped to the calling user: this is the row-level
authorization rule of the store. Writes are committed before their change
event is published, so a subscriber that re-reads on notification always
sees the committed state.
"""
import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import utc_now
from models.bookmark import Bookmark
from schemas.bookmark import BookmarkCreate, BookmarkResponse, BookmarkUpdate
from services.change_feed import ChangeEvent, ChangeFeed, ChangeKind

logger = logging.getLogger(__name__)

TABLE = Bookmark.__tablename__


class BookmarkOwnershipError(Exception):
    """Raised when a write names a user other than the caller."""


def _record(bookmark: Bookmark) -> dict:
    return BookmarkResponse.model_validate(bookmark).model_dump(mode="json")


def _change(kind: ChangeKind, record: dict | None, old_record: dict | None) -> ChangeEvent:
    return ChangeEvent(
        table=TABLE,
        kind=kind,
        record=record,
        old_record=old_record,
        commit_timestamp=utc_now().isoformat(),
    )


async def get_bookmarks(db: AsyncSession, user_id: UUID) -> list[Bookmark]:
    """All bookmarks owned by the user, newest first."""
    result = await db.scalars(
        select(Bookmark)
        .where(Bookmark.user_id == user_id)
        .order_by(Bookmark.created_at.desc()),
    )
    return list(result.all())


async def get_bookmark(db: AsyncSession, user_id: UUID, bookmark_id: UUID) -> Bookmark | None:
    """A single bookmark, or None if it does not exist or belongs to someone else."""
    return await db.scalar(
        select(Bookmark).where(Bookmark.id == bookmark_id, Bookmark.user_id == user_id),
    )


async def create_bookmark(
    db: AsyncSession,
    feed: ChangeFeed,
    user_id: UUID,
    data: BookmarkCreate,
) -> Bookmark:
    """
    Insert a bookmark owned by the caller.

    Raises:
        BookmarkOwnershipError: data.user_id is set and differs from user_id.
    """
    if data.user_id is not None and data.user_id != user_id:
        logger.warning(
            "bookmark_ownership_violation",
            extra={"user_id": str(user_id), "requested_user_id": str(data.user_id)},
        )
        raise BookmarkOwnershipError(str(data.user_id))

    bookmark = Bookmark(user_id=user_id, title=data.title, url=data.url)
    db.add(bookmark)
    await db.commit()

    await feed.publish(_change(ChangeKind.INSERT, _record(bookmark), None))
    return bookmark


async def update_bookmark(
    db: AsyncSession,
    feed: ChangeFeed,
    user_id: UUID,
    bookmark_id: UUID,
    data: BookmarkUpdate,
) -> Bookmark | None:
    """Update title and/or url of the caller's bookmark; None if not found."""
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        return None

    old_record = _record(bookmark)
    for field, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(bookmark, field, value)
    await db.commit()

    await feed.publish(_change(ChangeKind.UPDATE, _record(bookmark), old_record))
    return bookmark


async def delete_bookmark(
    db: AsyncSession,
    feed: ChangeFeed,
    user_id: UUID,
    bookmark_id: UUID,
) -> bool:
    """Delete the caller's bookmark; False if not found."""
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        return False

    old_record = _record(bookmark)
    await db.delete(bookmark)
    await db.commit()

    await feed.publish(_change(ChangeKind.DELETE, None, old_record))
    return True
