"""
Credential widget.

Collects credentials, calls the identity provider and owns credential errors.
The screen hosting it only observes two kinds of events: view changes and
auth-state changes.
"""
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum

from client.backend import Backend, BackendError
from client.subscriptions import Subscription
from client.types import AuthEvent, AuthResponse

logger = logging.getLogger(__name__)


class AuthView(Enum):
    """Forms the widget can show."""

    SIGN_IN = "sign_in"
    SIGN_UP = "sign_up"


ViewListener = Callable[[AuthView], Awaitable[None]]
AuthStateListener = Callable[[AuthEvent, AuthResponse], Awaitable[None]]


class AuthWidget:
    """Email/password form with optional third-party providers."""

    def __init__(
        self,
        backend: Backend,
        *,
        providers: Sequence[str] = (),
        view: AuthView = AuthView.SIGN_IN,
        redirect_to: str | None = None,
    ) -> None:
        self._backend = backend
        self.providers = tuple(providers)
        self.view = view
        self.redirect_to = redirect_to
        self.error: str | None = None
        self.busy = False
        self._view_listeners: list[ViewListener] = []
        self._auth_listeners: list[AuthStateListener] = []

    def on_view_change(self, callback: ViewListener) -> Subscription:
        """Register a listener for view switches."""
        return self._register(self._view_listeners, callback, "widget:view")

    def on_auth_state_change(self, callback: AuthStateListener) -> Subscription:
        """Register a listener for successful sign-in/sign-up."""
        return self._register(self._auth_listeners, callback, "widget:auth")

    @staticmethod
    def _register(listeners: list, callback: Callable, name: str) -> Subscription:
        listeners.append(callback)

        def release() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return Subscription(release, name=name)

    async def set_view(self, view: AuthView) -> None:
        """Switch forms; clears any credential error."""
        if view is self.view:
            return
        self.view = view
        self.error = None
        for listener in list(self._view_listeners):
            await listener(view)

    async def submit(self, email: str, password: str) -> AuthResponse | None:
        """
        Sign up or sign in depending on the current view.

        Returns None and sets `error` when the provider rejects the credentials.
        """
        self.error = None
        self.busy = True
        try:
            if self.view is AuthView.SIGN_UP:
                response = await self._backend.sign_up(email, password)
                event = AuthEvent.SIGNED_UP
            else:
                response = await self._backend.sign_in_with_password(email, password)
                event = AuthEvent.SIGNED_IN
        except BackendError as e:
            logger.info("credentials_rejected", extra={"view": self.view.value})
            self.error = e.detail
            return None
        finally:
            self.busy = False

        for listener in list(self._auth_listeners):
            await listener(event, response)
        return response

    def provider_url(self, provider: str) -> str:
        """Redirect URL for a configured third-party provider."""
        if provider not in self.providers:
            raise ValueError(f"Provider not enabled: '{provider}'")
        return self._backend.provider_sign_in_url(provider, self.redirect_to)
