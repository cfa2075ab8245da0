"""Entry screen: route signed-in users onward, otherwise collect credentials."""
import logging
from dataclasses import dataclass
from typing import ClassVar

from client.backend import Backend
from client.router import Route, Router
from client.screens.base import LoadingView, Screen
from client.types import AuthEvent, AuthResponse
from client.widget import AuthView, AuthWidget

logger = logging.getLogger(__name__)

APP_TITLE = "Smart Bookmark"
TAGLINE = "Sign in to manage your private bookmarks"
CONFIRM_EMAIL_NOTICE = "Check your email for the confirmation link to verify your account."


@dataclass(frozen=True)
class EntryView:
    """Render model of the credential form."""

    title: str
    tagline: str
    view: AuthView
    providers: tuple[str, ...]
    notice: str | None
    error: str | None


class EntryScreen(Screen):
    """Checks for an existing session, otherwise hosts the credential widget."""

    route: ClassVar[Route] = Route.ENTRY

    def __init__(
        self,
        backend: Backend,
        router: Router,
        *,
        providers: tuple[str, ...] = (),
        redirect_to: str | None = None,
    ) -> None:
        super().__init__(backend, router)
        self.widget = AuthWidget(backend, providers=providers, redirect_to=redirect_to)
        self.loading = True
        self.show_confirm_notice = False

    async def _on_mount(self) -> None:
        self._hold(self.widget.on_view_change(self._on_view_change))
        self._hold(self.widget.on_auth_state_change(self._on_auth_state_change))

        session = await self._current_session()
        if session is not None:
            self._router.navigate(Route.DASHBOARD)
            return
        self.loading = False

    async def _on_view_change(self, view: AuthView) -> None:
        if view is not AuthView.SIGN_UP:
            self.show_confirm_notice = False

    async def _on_auth_state_change(self, event: AuthEvent, response: AuthResponse) -> None:
        user = response.user
        if event is AuthEvent.SIGNED_UP and user.email and user.email_confirmed_at is None:
            logger.info("confirmation_pending")
            self.show_confirm_notice = True
            return
        if response.session is not None:
            self._router.navigate(Route.DASHBOARD)

    def render(self) -> LoadingView | EntryView:
        """Loading until the session check resolves, then the form."""
        if self.loading:
            return LoadingView()
        return EntryView(
            title=APP_TITLE,
            tagline=TAGLINE,
            view=self.widget.view,
            providers=self.widget.providers,
            notice=CONFIRM_EMAIL_NOTICE if self.show_confirm_notice else None,
            error=self.widget.error,
        )
