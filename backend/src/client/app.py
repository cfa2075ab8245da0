"""
Composition root of the client.

`App` owns the single backend handle, the router and the mounted screen. Route
changes are queued and applied on a dedicated task: the old screen is fully
unmounted, releasing its listeners and feed, before the next one mounts.
"""
import asyncio
import logging
from types import TracebackType

from client.backend import Backend, HttpBackend
from client.config import ClientSettings, get_client_settings
from client.router import Route, Router
from client.screens.base import Screen
from client.screens.dashboard import DashboardScreen
from client.screens.entry import EntryScreen
from client.subscriptions import Subscription

logger = logging.getLogger(__name__)


class App:
    """One backend, one router, one screen at a time."""

    def __init__(
        self,
        backend: Backend,
        *,
        router: Router | None = None,
        providers: tuple[str, ...] = (),
        redirect_to: str | None = None,
        owns_backend: bool = False,
    ) -> None:
        self.backend = backend
        self.router = router or Router()
        self.providers = providers
        self.redirect_to = redirect_to
        self.screen: Screen | None = None
        self._owns_backend = owns_backend
        self._navigation: Subscription | None = None
        self._worker: asyncio.Task[None] | None = None

    @classmethod
    def create(cls, settings: ClientSettings | None = None) -> "App":
        """Build the app with the process-wide HTTP backend."""
        settings = settings or get_client_settings()
        return cls(
            HttpBackend(settings),
            providers=tuple(settings.auth_providers),
            redirect_to=settings.redirect_url,
            owns_backend=True,
        )

    def _build(self, route: Route) -> Screen:
        if route is Route.DASHBOARD:
            return DashboardScreen(self.backend, self.router)
        return EntryScreen(
            self.backend, self.router,
            providers=self.providers, redirect_to=self.redirect_to,
        )

    async def start(self) -> None:
        """Mount the screen for the current route and follow navigation from then on."""
        self._navigation = self.router.on_navigate(self._on_navigate)
        self._schedule()
        await self.settle()

    def _on_navigate(self, route: Route) -> None:  # noqa: ARG002
        self._schedule()

    def _schedule(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._apply_routes(), name="app-router")

    async def _apply_routes(self) -> None:
        while self.screen is None or self.screen.route is not self.router.current:
            route = self.router.current
            if self.screen is not None:
                await self.screen.unmount()
            logger.info("mount_screen", extra={"route": route.value})
            self.screen = self._build(route)
            await self.screen.mount()

    async def settle(self) -> None:
        """Wait until the mounted screen matches the current route."""
        while self._worker is not None and not self._worker.done():
            await self._worker

    async def aclose(self) -> None:
        """Unmount the current screen and, if owned, close the backend."""
        if self._navigation is not None:
            await self._navigation.close()
            self._navigation = None
        if self._worker is not None and not self._worker.done():
            await self._worker
        if self.screen is not None:
            await self.screen.unmount()
        if self._owns_backend:
            await self.backend.aclose()

    async def __aenter__(self) -> "App":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
