"""
Dashboard screen: one user's bookmarks, kept in sync with the server.

State is synchronized against two independent sources, the session-change
listener and the bookmarks change feed. Every mutation and every feed signal
is followed by a wholesale re-fetch; the list is never patched or sorted
locally. A re-fetch is applied only if the identity it was issued for is
still the current one.
"""
import logging
from dataclasses import dataclass
from typing import ClassVar

from client.backend import Backend, BackendError
from client.router import Route, Router
from client.screens.base import LoadingView, Screen
from client.subscriptions import Subscription
from client.types import (
    AuthEvent,
    Bookmark,
    BookmarkDraft,
    ChangeKind,
    ChangeNotification,
    Session,
    User,
)

logger = logging.getLogger(__name__)

TABLE = "bookmarks"
HEADING = "My Bookmarks"
EMPTY_MESSAGE = "No bookmarks yet. Add one above!"
SUBMIT_LABEL = "Add Bookmark"
PENDING_LABEL = "Adding..."


@dataclass(frozen=True)
class DashboardView:
    """Render model of the dashboard."""

    heading: str
    email: str | None
    title: str
    url: str
    pending: bool
    submit_label: str
    bookmarks: tuple[Bookmark, ...]
    empty_message: str | None
    notice: str | None


class DashboardScreen(Screen):
    """Authenticated view of the current user's bookmark collection."""

    route: ClassVar[Route] = Route.DASHBOARD

    def __init__(self, backend: Backend, router: Router) -> None:
        super().__init__(backend, router)
        self.user: User | None = None
        self.bookmarks: list[Bookmark] = []
        self.pending = False
        self.title = ""
        self.url = ""
        self.notice: str | None = None
        self._feed: Subscription | None = None

    async def _on_mount(self) -> None:
        session = await self._current_session()
        if session is None:
            self._router.navigate(Route.ENTRY)
            return
        await self._set_user(session.user)
        self._hold(self._backend.on_session_change(self._on_session_change))

    async def _on_unmount(self) -> None:
        await self._close_feed()

    async def _on_session_change(self, event: AuthEvent, session: Session | None) -> None:
        if session is None:
            logger.info("session_lost", extra={"event": event.value})
            await self._set_user(None)
            self._router.navigate(Route.ENTRY)
            return
        await self._set_user(session.user)

    async def _set_user(self, user: User | None) -> None:
        """
        Switch the current identity.

        Same identity: only the reference is updated. Otherwise the previous
        snapshot is discarded, the previous feed closed, and, for a new user,
        a feed opened and the collection fetched.
        """
        previous = self.user
        if user is not None and previous is not None and user.id == previous.id:
            self.user = user
            return

        self.user = user
        self.bookmarks = []
        await self._close_feed()
        if user is None:
            return
        await self._open_feed(user)
        await self.refresh()

    async def _open_feed(self, user: User) -> None:
        try:
            feed = await self._backend.subscribe_to_table_changes(
                TABLE, f"user_id=eq.{user.id}", [ChangeKind.ALL], self._on_change,
            )
        except BackendError as e:
            logger.warning("live_sync_unavailable", extra={"error": str(e)})
            return
        # Overlapping switches back to the same user: first feed wins
        stale = self.user is None or self.user.id != user.id or not self.mounted
        if stale or self._feed is not None:
            await feed.close()
            return
        self._feed = feed

    async def _close_feed(self) -> None:
        feed, self._feed = self._feed, None
        if feed is not None:
            await feed.close()

    async def _on_change(self, notification: ChangeNotification) -> None:
        logger.debug("bookmarks_changed", extra={"type": notification.type})
        await self.refresh()

    async def refresh(self) -> None:
        """Replace the collection with a fresh server snapshot for the current user."""
        user = self.user
        if user is None:
            return
        try:
            bookmarks = await self._backend.list_bookmarks(user.id)
        except BackendError as e:
            logger.warning("bookmark_refresh_failed", extra={"error": str(e)})
            return
        if self.user is None or self.user.id != user.id:
            logger.debug("Discarding snapshot fetched for a previous user")
            return
        self.bookmarks = list(bookmarks)

    async def create_bookmark(self) -> None:
        """Insert the form's bookmark, then re-fetch. Incomplete forms are ignored."""
        user, title, url = self.user, self.title, self.url
        if not title or not url or user is None:
            return

        self.pending = True
        try:
            await self._backend.insert_bookmark(
                BookmarkDraft(title=title, url=url, user_id=user.id),
            )
            self.title = ""
            self.url = ""
        except BackendError as e:
            logger.warning("bookmark_insert_failed", extra={"error": str(e)})
            self.notice = f"Could not add bookmark: {e.detail}"
            return
        finally:
            self.pending = False

        self.notice = None
        await self.refresh()

    async def delete_bookmark(self, bookmark_id: str) -> None:
        """Delete a bookmark, then re-fetch whether or not the delete succeeded."""
        try:
            await self._backend.delete_bookmark(bookmark_id)
        except BackendError as e:
            logger.warning("bookmark_delete_failed", extra={"error": str(e)})
            self.notice = f"Could not delete bookmark: {e.detail}"
        if self.user is not None:
            await self.refresh()

    async def sign_out(self) -> None:
        """Sign out and go back to the entry route."""
        try:
            await self._backend.sign_out()
        except BackendError as e:
            logger.warning("sign_out_failed", extra={"error": str(e)})
        self._router.navigate(Route.ENTRY)

    def render(self) -> LoadingView | DashboardView:
        """Nothing but the placeholder until a user is confirmed."""
        if self.user is None:
            return LoadingView()
        return DashboardView(
            heading=HEADING,
            email=self.user.email,
            title=self.title,
            url=self.url,
            pending=self.pending,
            submit_label=PENDING_LABEL if self.pending else SUBMIT_LABEL,
            bookmarks=tuple(self.bookmarks),
            empty_message=None if self.bookmarks else EMPTY_MESSAGE,
            notice=self.notice,
        )
