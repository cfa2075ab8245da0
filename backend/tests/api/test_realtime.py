"""Tests for the realtime change feed endpoint."""
import asyncio
import json
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from api.main import app
from api.routers.realtime import KEEPALIVE, format_sse, stream_changes, subscribe_to_changes
from core.config import Settings
from db.session import get_async_session, get_session_factory
from services.change_feed import ChangeEvent, ChangeFeed, ChangeKind, RowFilter


def _bookmark_event(kind: ChangeKind, user_id: str, title: str = "Example") -> ChangeEvent:
    row = {"id": "b1", "title": title, "url": "https://example.com", "user_id": user_id}
    return ChangeEvent(
        table="bookmarks",
        kind=kind,
        record=None if kind is ChangeKind.DELETE else row,
        old_record=row if kind is ChangeKind.DELETE else None,
        commit_timestamp="2024-01-01T00:00:00+00:00",
    )


def _parse_frame(frame: str) -> tuple[str, dict]:
    event, data = frame.strip().split("\n")
    return event.removeprefix("event: "), json.loads(data.removeprefix("data: "))


def test_format_sse() -> None:
    """Frames carry the event name and data and end with a blank line."""
    assert format_sse("change", "{}") == "event: change\ndata: {}\n\n"


async def test_subscribe_unknown_table(client: AsyncClient, make_user) -> None:  # noqa: ANN001
    """Only known tables can be subscribed to."""
    _, headers = await make_user("alice@example.com")

    response = await client.get("/realtime/users", headers=headers)
    assert response.status_code == 404


async def test_subscribe_invalid_filter(client: AsyncClient, make_user) -> None:  # noqa: ANN001
    """Malformed filters and unknown events return 400."""
    _, headers = await make_user("alice@example.com")

    response = await client.get(
        "/realtime/bookmarks", params={"filter": "user_id=gt.5"}, headers=headers,
    )
    assert response.status_code == 400

    response = await client.get(
        "/realtime/bookmarks", params={"filter": "garbage"}, headers=headers,
    )
    assert response.status_code == 400

    response = await client.get(
        "/realtime/bookmarks", params={"event": "TRUNCATE"}, headers=headers,
    )
    assert response.status_code == 400


async def test_subscribe_requires_auth(client: AsyncClient) -> None:
    """Anonymous subscribers are rejected."""
    response = await client.get("/realtime/bookmarks")
    assert response.status_code == 401


async def test_stream_changes_frames(change_feed: ChangeFeed) -> None:
    """The stream opens with 'subscribed', sends keepalives, then changes."""
    subscription = change_feed.subscribe("bookmarks", [RowFilter("user_id", "u1")])
    stream = stream_changes(subscription, heartbeat_seconds=0.01)

    event, data = _parse_frame(await anext(stream))
    assert event == "subscribed"
    assert data == {
        "table": "bookmarks",
        "filters": ["user_id=eq.u1"],
        "events": ["DELETE", "INSERT", "UPDATE"],
    }

    assert await anext(stream) == KEEPALIVE

    change_feed.dispatch(_bookmark_event(ChangeKind.INSERT, "u1"))
    event, data = _parse_frame(await anext(stream))
    assert event == "change"
    assert data["type"] == "INSERT"
    assert data["record"]["user_id"] == "u1"

    await stream.aclose()
    assert subscription.closed
    assert change_feed.subscriber_count == 0


async def test_stream_changes_ends_when_subscription_closes(change_feed: ChangeFeed) -> None:
    """Closing the subscription (e.g. on shutdown) ends the stream."""
    subscription = change_feed.subscribe("bookmarks")
    stream = stream_changes(subscription, heartbeat_seconds=5)
    await anext(stream)

    await change_feed.stop()
    frames = [frame async for frame in stream]
    assert frames == []


async def test_endpoint_adds_owner_filter(
    change_feed: ChangeFeed,
    settings: Settings,
    make_user,  # noqa: ANN001
) -> None:
    """A subscriber never hears about rows of other users, whatever filter it asks for."""
    alice, _ = await make_user("alice@example.com")
    bob, _ = await make_user("bob@example.com")

    response = await subscribe_to_changes(
        table="bookmarks",
        row_filter=f"user_id=eq.{bob.id}",
        events=["*"],
        current_user=alice,
        feed=change_feed,
        settings=settings,
    )
    assert response.media_type == "text/event-stream"
    body = response.body_iterator

    _, data = _parse_frame(await anext(body))
    assert data["filters"] == [f"user_id=eq.{bob.id}", f"user_id=eq.{alice.id}"]

    # Bob's row matches the requested filter but not the owner filter
    change_feed.dispatch(_bookmark_event(ChangeKind.INSERT, str(bob.id)))
    assert await anext(body) == KEEPALIVE
    await body.aclose()


async def test_endpoint_streams_own_changes(
    change_feed: ChangeFeed,
    settings: Settings,
    make_user,  # noqa: ANN001
) -> None:
    """The caller's own inserts and deletes arrive; event filtering applies."""
    alice, _ = await make_user("alice@example.com")
    bob, _ = await make_user("bob@example.com")

    response = await subscribe_to_changes(
        table="bookmarks",
        row_filter=f"user_id=eq.{alice.id}",
        events=["DELETE"],
        current_user=alice,
        feed=change_feed,
        settings=settings,
    )
    body = response.body_iterator
    await anext(body)

    change_feed.dispatch(_bookmark_event(ChangeKind.INSERT, str(alice.id)))
    change_feed.dispatch(_bookmark_event(ChangeKind.DELETE, str(bob.id)))
    change_feed.dispatch(_bookmark_event(ChangeKind.DELETE, str(alice.id)))

    event, data = _parse_frame(await asyncio.wait_for(anext(body), timeout=1))
    assert event == "change"
    assert data["type"] == "DELETE"
    assert data["old_record"]["user_id"] == str(alice.id)
    await body.aclose()
    assert change_feed.subscriber_count == 0


class CountingSessionFactory:
    """Wraps a session factory and counts sessions opened and closed."""

    def __init__(self, factory: Callable[[], Any]) -> None:
        self._factory = factory
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def __call__(self) -> AsyncIterator[AsyncSession]:
        self.opened += 1
        try:
            async with self._factory() as session:
                yield session
        finally:
            self.closed += 1


async def test_stream_holds_no_database_session(
    client: AsyncClient,  # noqa: ARG001
    make_user,  # noqa: ANN001
) -> None:
    """Authentication finishes with its session closed before the stream starts."""
    _, headers = await make_user("alice@example.com")

    factory = CountingSessionFactory(app.dependency_overrides[get_session_factory]())
    app.dependency_overrides[get_session_factory] = lambda: factory
    request_session = app.dependency_overrides[get_async_session]
    request_sessions = {"opened": 0, "closed": 0}

    async def _counting_session() -> AsyncGenerator[AsyncSession]:
        request_sessions["opened"] += 1
        try:
            async for session in request_session():
                yield session
        finally:
            request_sessions["closed"] += 1

    app.dependency_overrides[get_async_session] = _counting_session

    first_chunk = asyncio.Event()
    disconnected = asyncio.Event()
    messages: list[dict[str, Any]] = []

    async def receive() -> dict[str, Any]:
        await disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(message: dict[str, Any]) -> None:
        messages.append(message)
        if message["type"] == "http.response.body" and message.get("body"):
            first_chunk.set()

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/realtime/bookmarks",
        "raw_path": b"/realtime/bookmarks",
        "root_path": "",
        "query_string": b"",
        "headers": [
            (b"host", b"test"),
            (b"authorization", headers["Authorization"].encode()),
        ],
        "client": ("127.0.0.1", 50000),
        "server": ("test", 80),
    }
    request = asyncio.create_task(app(scope, receive, send))
    try:
        await asyncio.wait_for(first_chunk.wait(), timeout=2)

        # The stream is live here
        assert not request.done()
        assert messages[0]["status"] == 200
        assert factory.opened == 1
        assert factory.closed == 1
        assert request_sessions["opened"] == request_sessions["closed"]
    finally:
        disconnected.set()
        await asyncio.wait_for(request, timeout=2)
