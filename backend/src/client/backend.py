"""
Backend capability contract and its HTTP implementation.

Screens only talk to a `Backend`. `HttpBackend` implements it against the
Smart Bookmark API: it keeps the current session in memory, reports session
transitions to listeners, and reads the change feed as Server-Sent Events.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

import httpx
from pydantic import TypeAdapter, ValidationError

from client.config import ClientSettings
from client.sse import iter_sse
from client.subscriptions import Subscription, task_subscription
from client.types import (
    AuthEvent,
    AuthResponse,
    Bookmark,
    BookmarkDraft,
    ChangeKind,
    ChangeNotification,
    Session,
    User,
)

logger = logging.getLogger(__name__)

AuthListener = Callable[[AuthEvent, Session | None], Awaitable[None]]
ChangeListener = Callable[[ChangeNotification], Awaitable[None]]

_bookmark_list = TypeAdapter(list[Bookmark])


class BackendError(Exception):
    """A backend call failed. status_code is None for transport failures."""

    def __init__(self, status_code: int | None, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{status_code}: {detail}" if status_code else detail)


class Backend(Protocol):
    """Capabilities the screens consume."""

    async def get_current_session(self) -> Session | None: ...

    def on_session_change(self, callback: AuthListener) -> Subscription: ...

    async def sign_up(self, email: str, password: str) -> AuthResponse: ...

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse: ...

    def provider_sign_in_url(self, provider: str, redirect_to: str | None = None) -> str: ...

    async def sign_out(self) -> None: ...

    async def insert_bookmark(self, draft: BookmarkDraft) -> None: ...

    async def delete_bookmark(self, bookmark_id: str) -> None: ...

    async def list_bookmarks(self, user_id: str) -> list[Bookmark]: ...

    async def subscribe_to_table_changes(
        self,
        table: str,
        row_filter: str,
        events: Iterable[ChangeKind],
        callback: ChangeListener,
    ) -> Subscription: ...

    async def aclose(self) -> None: ...


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)


class HttpBackend:
    """Backend implementation over the Smart Bookmark HTTP API."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._http = httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=settings.request_timeout,
            transport=transport,
        )
        self._session: Session | None = None
        self._listeners: list[AuthListener] = []
        self._feeds: set[Subscription] = set()

    @property
    def session(self) -> Session | None:
        """The session currently held, without checking it against the server."""
        return self._session

    async def aclose(self) -> None:
        """Close every open feed and the HTTP connection pool."""
        for feed in list(self._feeds):
            await feed.close()
        await self._http.aclose()

    # -- session -----------------------------------------------------------

    def on_session_change(self, callback: AuthListener) -> Subscription:
        """Register a listener for session transitions."""
        self._listeners.append(callback)

        def release() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return Subscription(release, name="auth")

    async def _set_session(self, session: Session | None, event: AuthEvent) -> None:
        self._session = session
        logger.info("auth_state_changed", extra={"event": event.value})
        for listener in list(self._listeners):
            try:
                await listener(event, session)
            except Exception:
                logger.exception("Session listener failed on %s", event.value)

    async def get_current_session(self) -> Session | None:
        """
        Return the held session after verifying it with the server.

        Any failure is reported as "no session". An expired session, or one
        the server rejects, is dropped and listeners see SIGNED_OUT.
        """
        session = self._session
        if session is None:
            return None
        if session.is_expired():
            logger.info("session_expired")
            await self._set_session(None, AuthEvent.SIGNED_OUT)
            return None
        try:
            response = await self._request("GET", "/auth/user")
            user = User.model_validate(response.json())
        except (BackendError, ValidationError) as e:
            logger.warning("session_check_failed", extra={"error": str(e)})
            return None
        if user != session.user and self._session is session:
            session = session.model_copy(update={"user": user})
            self._session = session
        return session

    async def sign_up(self, email: str, password: str) -> AuthResponse:
        """Create an account; signs in immediately if no confirmation is pending."""
        response = await self._request(
            "POST", "/auth/signup", json={"email": email, "password": password},
            authenticated=False,
        )
        result = AuthResponse.model_validate(response.json())
        if result.session is not None:
            await self._set_session(result.session, AuthEvent.SIGNED_IN)
        return result

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        """Exchange credentials for a session."""
        response = await self._request(
            "POST", "/auth/token", json={"email": email, "password": password},
            authenticated=False,
        )
        result = AuthResponse.model_validate(response.json())
        if result.session is None:
            raise BackendError(response.status_code, "Sign-in returned no session")
        await self._set_session(result.session, AuthEvent.SIGNED_IN)
        return result

    def provider_sign_in_url(self, provider: str, redirect_to: str | None = None) -> str:
        """URL that starts third-party sign-in with the identity provider."""
        url = self._http.base_url.join("/auth/authorize")
        return str(url.copy_merge_params({
            "provider": provider,
            "redirect_to": redirect_to or self._settings.redirect_url,
        }))

    async def sign_out(self) -> None:
        """Revoke the session server-side; the local session is dropped regardless."""
        if self._session is None:
            return
        try:
            await self._request("POST", "/auth/logout")
        finally:
            if self._session is not None:
                await self._set_session(None, AuthEvent.SIGNED_OUT)

    # -- bookmarks ---------------------------------------------------------

    async def insert_bookmark(self, draft: BookmarkDraft) -> None:
        """Insert a bookmark; the server rejects a user_id other than the caller's."""
        await self._request("POST", "/bookmarks/", json=draft.model_dump())

    async def delete_bookmark(self, bookmark_id: str) -> None:
        """Delete one of the caller's bookmarks."""
        await self._request("DELETE", f"/bookmarks/{bookmark_id}")

    async def list_bookmarks(self, user_id: str) -> list[Bookmark]:
        """The user's bookmarks in server order (newest first)."""
        response = await self._request("GET", "/bookmarks/", params={"user_id": user_id})
        try:
            return _bookmark_list.validate_python(response.json())
        except ValidationError as e:
            raise BackendError(response.status_code, f"Malformed bookmark list: {e}") from e

    # -- change feed -------------------------------------------------------

    async def subscribe_to_table_changes(
        self,
        table: str,
        row_filter: str,
        events: Iterable[ChangeKind],
        callback: ChangeListener,
    ) -> Subscription:
        """Start reading the change feed in the background; close the handle to stop."""
        params: list[tuple[str, str]] = [("filter", row_filter)]
        params.extend(("event", kind.value) for kind in events)
        task = asyncio.create_task(
            self._consume_feed(table, params, callback), name=f"realtime:{table}",
        )
        inner = task_subscription(task, name=f"realtime:{table}")

        async def release() -> None:
            self._feeds.discard(subscription)
            await inner.close()

        subscription = Subscription(release, name=f"realtime:{table}")
        self._feeds.add(subscription)
        return subscription

    async def _consume_feed(
        self,
        table: str,
        params: list[tuple[str, str]],
        callback: ChangeListener,
    ) -> None:
        timeout = httpx.Timeout(self._settings.request_timeout, read=None)
        try:
            async with self._http.stream(
                "GET", f"/realtime/{table}",
                params=params, headers=self._auth_headers(), timeout=timeout,
            ) as response:
                if response.is_error:
                    await response.aread()
                    logger.warning(
                        "realtime_subscribe_failed",
                        extra={"table": table, "status_code": response.status_code,
                               "detail": _error_detail(response)},
                    )
                    return
                async for event in iter_sse(response.aiter_lines()):
                    if event.event == "subscribed":
                        logger.info("realtime_subscribed", extra={"table": table})
                        continue
                    if event.event != "change":
                        continue
                    try:
                        notification = ChangeNotification.model_validate_json(event.data)
                    except ValidationError:
                        logger.warning("Ignoring malformed change event on %s", table)
                        continue
                    try:
                        await callback(notification)
                    except Exception:
                        logger.exception("Change listener failed for %s", table)
        except httpx.HTTPError as e:
            logger.warning("realtime_stream_failed", extra={"table": table, "error": str(e)})
            return
        logger.info("realtime_stream_ended", extra={"table": table})

    # -- transport ---------------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        if self._session is None:
            return {}
        return {"Authorization": f"Bearer {self._session.access_token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        authenticated: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send a request, raising BackendError on failure.

        A 401 for a request made with the held session means the session
        expired or was revoked elsewhere: it is dropped and listeners see
        SIGNED_OUT.
        """
        session = self._session if authenticated else None
        headers = self._auth_headers() if authenticated else {}
        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("backend_unreachable", extra={"method": method, "path": path})
            raise BackendError(None, str(e)) from e

        if response.status_code == 401 and session is not None and self._session is session:
            logger.info("session_rejected", extra={"path": path})
            await self._set_session(None, AuthEvent.SIGNED_OUT)
        if response.is_error:
            raise BackendError(response.status_code, _error_detail(response))
        return response
