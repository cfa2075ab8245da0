"""Tests for bookmark CRUD endpoints and their row-level authorization."""
import asyncio
from uuid import uuid4

from httpx import AsyncClient

from services.change_feed import ChangeFeed, ChangeKind, RowFilter


async def test_create_bookmark(client: AsyncClient, make_user) -> None:  # noqa: ANN001
    """Test creating a bookmark owned by the caller."""
    user, headers = await make_user("alice@example.com")

    response = await client.post(
        "/bookmarks/",
        json={"title": "Example", "url": "https://example.com"},
        headers=headers,
    )
    assert response.status_code == 201

    data = response.json()
    assert data["title"] == "Example"
    # Stored exactly as submitted, no trailing slash added
    assert data["url"] == "https://example.com"
    assert data["user_id"] == str(user.id)
    assert "id" in data
    assert "created_at" in data


async def test_create_bookmark_with_explicit_owner(
    client: AsyncClient,
    make_user,  # noqa: ANN001
) -> None:
    """Naming yourself as the owner is allowed."""
    user, headers = await make_user("alice@example.com")

    response = await client.post(
        "/bookmarks/",
        json={"title": "Mine", "url": "https://example.com/a", "user_id": str(user.id)},
        headers=headers,
    )
    assert response.status_code == 201
    assert response.json()["user_id"] == str(user.id)


async def test_create_bookmark_for_another_user(
    client: AsyncClient,
    make_user,  # noqa: ANN001
) -> None:
    """Inserting a row owned by someone else is rejected and nothing is stored."""
    _, alice_headers = await make_user("alice@example.com")
    bob, bob_headers = await make_user("bob@example.com")

    response = await client.post(
        "/bookmarks/",
        json={"title": "Sneaky", "url": "https://example.com", "user_id": str(bob.id)},
        headers=alice_headers,
    )
    assert response.status_code == 403

    response = await client.get("/bookmarks/", headers=bob_headers)
    assert response.json() == []


async def test_create_bookmark_validation(client: AsyncClient, make_user) -> None:  # noqa: ANN001
    """Blank titles, relative URLs and missing fields return 422."""
    _, headers = await make_user("alice@example.com")

    for body in (
        {"title": "   ", "url": "https://example.com"},
        {"title": "Relative", "url": "/just/a/path"},
        {"title": "Scheme", "url": "ftp://example.com"},
        {"title": "No url"},
        {"url": "https://example.com"},
    ):
        response = await client.post("/bookmarks/", json=body, headers=headers)
        assert response.status_code == 422, body


async def test_create_bookmark_requires_auth(client: AsyncClient) -> None:
    """Anonymous writes are rejected."""
    response = await client.post(
        "/bookmarks/", json={"title": "Example", "url": "https://example.com"},
    )
    assert response.status_code == 401


async def test_list_bookmarks_newest_first(client: AsyncClient, make_user) -> None:  # noqa: ANN001
    """Bookmarks are listed by creation time, newest first."""
    user, headers = await make_user("alice@example.com")

    for i in range(3):
        await client.post(
            "/bookmarks/",
            json={"title": f"Bookmark {i}", "url": f"https://example.com/{i}"},
            headers=headers,
        )

    response = await client.get("/bookmarks/", params={"user_id": str(user.id)}, headers=headers)
    assert response.status_code == 200
    titles = [b["title"] for b in response.json()]
    assert titles == ["Bookmark 2", "Bookmark 1", "Bookmark 0"]


async def test_list_bookmarks_empty(client: AsyncClient, make_user) -> None:  # noqa: ANN001
    """A new user has no bookmarks."""
    _, headers = await make_user("alice@example.com")

    response = await client.get("/bookmarks/", headers=headers)
    assert response.status_code == 200
    assert response.json() == []


async def test_users_only_see_their_own_bookmarks(
    client: AsyncClient,
    make_user,  # noqa: ANN001
) -> None:
    """Rows of other users are invisible, even when asked for explicitly."""
    alice, alice_headers = await make_user("alice@example.com")
    bob, bob_headers = await make_user("bob@example.com")

    await client.post(
        "/bookmarks/",
        json={"title": "Alice's", "url": "https://alice.example.com"},
        headers=alice_headers,
    )

    response = await client.get("/bookmarks/", headers=bob_headers)
    assert response.json() == []

    response = await client.get(
        "/bookmarks/", params={"user_id": str(alice.id)}, headers=bob_headers,
    )
    assert response.status_code == 200
    assert response.json() == []

    response = await client.get(
        "/bookmarks/", params={"user_id": str(bob.id)}, headers=alice_headers,
    )
    assert response.json() == []

    response = await client.get("/bookmarks/", headers=alice_headers)
    assert [b["title"] for b in response.json()] == ["Alice's"]


async def test_get_bookmark(client: AsyncClient, make_user) -> None:  # noqa: ANN001
    """Get a single bookmark; other users get 404."""
    _, alice_headers = await make_user("alice@example.com")
    _, bob_headers = await make_user("bob@example.com")

    created = await client.post(
        "/bookmarks/",
        json={"title": "Example", "url": "https://example.com"},
        headers=alice_headers,
    )
    bookmark_id = created.json()["id"]

    response = await client.get(f"/bookmarks/{bookmark_id}", headers=alice_headers)
    assert response.status_code == 200
    assert response.json()["title"] == "Example"

    response = await client.get(f"/bookmarks/{bookmark_id}", headers=bob_headers)
    assert response.status_code == 404

    response = await client.get(f"/bookmarks/{uuid4()}", headers=alice_headers)
    assert response.status_code == 404


async def test_update_bookmark(client: AsyncClient, make_user) -> None:  # noqa: ANN001
    """PATCH updates only the given fields."""
    _, headers = await make_user("alice@example.com")

    created = await client.post(
        "/bookmarks/",
        json={"title": "Old", "url": "https://example.com"},
        headers=headers,
    )
    bookmark_id = created.json()["id"]

    response = await client.patch(
        f"/bookmarks/{bookmark_id}", json={"title": "New"}, headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["title"] == "New"
    assert response.json()["url"] == "https://example.com"

    response = await client.patch(
        f"/bookmarks/{bookmark_id}", json={"url": "not a url"}, headers=headers,
    )
    assert response.status_code == 422


async def test_delete_bookmark(client: AsyncClient, make_user) -> None:  # noqa: ANN001
    """Delete removes the row; deleting again is 404."""
    _, headers = await make_user("alice@example.com")

    created = await client.post(
        "/bookmarks/",
        json={"title": "Example", "url": "https://example.com"},
        headers=headers,
    )
    bookmark_id = created.json()["id"]

    response = await client.delete(f"/bookmarks/{bookmark_id}", headers=headers)
    assert response.status_code == 204

    response = await client.get("/bookmarks/", headers=headers)
    assert response.json() == []

    response = await client.delete(f"/bookmarks/{bookmark_id}", headers=headers)
    assert response.status_code == 404


async def test_delete_other_users_bookmark(client: AsyncClient, make_user) -> None:  # noqa: ANN001
    """Deleting someone else's row has no effect."""
    _, alice_headers = await make_user("alice@example.com")
    _, bob_headers = await make_user("bob@example.com")

    created = await client.post(
        "/bookmarks/",
        json={"title": "Alice's", "url": "https://example.com"},
        headers=alice_headers,
    )
    bookmark_id = created.json()["id"]

    response = await client.delete(f"/bookmarks/{bookmark_id}", headers=bob_headers)
    assert response.status_code == 404

    response = await client.get("/bookmarks/", headers=alice_headers)
    assert len(response.json()) == 1


async def test_mutations_publish_change_events(
    client: AsyncClient,
    change_feed: ChangeFeed,
    make_user,  # noqa: ANN001
) -> None:
    """Insert, update and delete each publish one event for the owner's rows."""
    alice, alice_headers = await make_user("alice@example.com")
    _, bob_headers = await make_user("bob@example.com")
    subscription = change_feed.subscribe("bookmarks", [RowFilter("user_id", str(alice.id))])

    created = await client.post(
        "/bookmarks/",
        json={"title": "Example", "url": "https://example.com"},
        headers=alice_headers,
    )
    bookmark_id = created.json()["id"]
    await client.patch(
        f"/bookmarks/{bookmark_id}", json={"title": "Renamed"}, headers=alice_headers,
    )
    await client.delete(f"/bookmarks/{bookmark_id}", headers=alice_headers)
    # Bob's write must not reach Alice's subscription
    await client.post(
        "/bookmarks/",
        json={"title": "Bob's", "url": "https://example.com"},
        headers=bob_headers,
    )

    events = [await asyncio.wait_for(subscription.get(), timeout=1) for _ in range(3)]
    assert [e.kind for e in events] == [ChangeKind.INSERT, ChangeKind.UPDATE, ChangeKind.DELETE]
    assert events[0].record["id"] == bookmark_id
    assert events[1].old_record["title"] == "Example"
    assert events[1].record["title"] == "Renamed"
    assert events[2].record is None
    assert events[2].old_record["id"] == bookmark_id
    subscription.close()
    assert await subscription.get() is None
