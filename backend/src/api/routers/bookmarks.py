"""Bookmark CRUD endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_change_feed, get_current_user
from models.user import User
from schemas.bookmark import BookmarkCreate, BookmarkResponse, BookmarkUpdate
from services import bookmark_service
from services.change_feed import ChangeFeed

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])


@router.post("/", response_model=BookmarkResponse, status_code=201)
async def create_bookmark(
    data: BookmarkCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> BookmarkResponse:
    """Create a new bookmark owned by the current user."""
    try:
        bookmark = await bookmark_service.create_bookmark(db, feed, current_user.id, data)
    except bookmark_service.BookmarkOwnershipError:
        raise HTTPException(
            status_code=403, detail="Cannot create bookmarks for another user",
        ) from None
    return BookmarkResponse.model_validate(bookmark)


@router.get("/", response_model=list[BookmarkResponse])
async def list_bookmarks(
    user_id: UUID | None = Query(
        default=None,
        description="Only return rows owned by this user (always intersected with the caller)",
    ),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> list[BookmarkResponse]:
    """List the current user's bookmarks, newest first."""
    if user_id is not None and user_id != current_user.id:
        return []
    bookmarks = await bookmark_service.get_bookmarks(db, current_user.id)
    return [BookmarkResponse.model_validate(b) for b in bookmarks]


@router.get("/{bookmark_id}", response_model=BookmarkResponse)
async def get_bookmark(
    bookmark_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Get a single bookmark by ID."""
    bookmark = await bookmark_service.get_bookmark(db, current_user.id, bookmark_id)
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return BookmarkResponse.model_validate(bookmark)


@router.patch("/{bookmark_id}", response_model=BookmarkResponse)
async def update_bookmark(
    bookmark_id: UUID,
    data: BookmarkUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> BookmarkResponse:
    """Update a bookmark."""
    bookmark = await bookmark_service.update_bookmark(
        db, feed, current_user.id, bookmark_id, data,
    )
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return BookmarkResponse.model_validate(bookmark)


@router.delete("/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> None:
    """Delete a bookmark."""
    deleted = await bookmark_service.delete_bookmark(
        db, feed, current_user.id, bookmark_id,
    )
    if not deleted:
        raise HTTPException(status_code=404, detail="Bookmark not found")
