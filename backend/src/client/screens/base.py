"""Shared screen lifecycle."""
import contextlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from client.backend import Backend, BackendError
from client.router import Route, Router
from client.subscriptions import Subscription
from client.types import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadingView:
    """Placeholder shown until a screen knows what to render."""

    message: str = "Loading..."


class Screen(ABC):
    """
    A mounted unit of UI state.

    Registrations made through `_hold` are released on unmount, whatever
    path leads there.
    """

    route: ClassVar[Route]

    def __init__(self, backend: Backend, router: Router) -> None:
        self._backend = backend
        self._router = router
        self._resources = contextlib.AsyncExitStack()
        self.mounted = False

    async def mount(self) -> None:
        """Run the screen's initialization."""
        self.mounted = True
        await self._on_mount()

    async def unmount(self) -> None:
        """Tear down and release every held registration. Safe to call twice."""
        if not self.mounted:
            return
        self.mounted = False
        try:
            await self._on_unmount()
        finally:
            await self._resources.aclose()

    def _hold(self, subscription: Subscription) -> Subscription:
        """Tie a registration to this screen's lifetime."""
        self._resources.push_async_callback(subscription.close)
        return subscription

    async def _current_session(self) -> Session | None:
        """Read the session; a failed check counts as no session."""
        try:
            return await self._backend.get_current_session()
        except BackendError as e:
            logger.warning("session_check_failed", extra={"error": str(e)})
            return None

    @abstractmethod
    async def _on_mount(self) -> None: ...

    async def _on_unmount(self) -> None:
        return None

    @abstractmethod
    def render(self) -> Any:
        """Return the render model for the presentation layer."""
