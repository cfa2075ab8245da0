"""
Change feed for table mutations.

Services publish a ChangeEvent after each committed write. Subscribers (the
realtime endpoint) receive the events that match their table, change kinds
and row filters. When Redis is connected, events travel through Redis pub/sub
so that every API process sees every change; otherwise fan-out is in-process.
"""
import asyncio
import contextlib
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from core.redis import RedisClient

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "changes:"


class ChangeKind(Enum):
    """Kind of row mutation."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


ALL_KINDS: frozenset[ChangeKind] = frozenset(ChangeKind)


class InvalidRowFilterError(ValueError):
    """Raised when a subscription filter or event list cannot be parsed."""


@dataclass(frozen=True)
class RowFilter:
    """Equality predicate on a single column (`column=eq.value`)."""

    column: str
    value: str

    def matches(self, row: dict[str, Any] | None) -> bool:
        """Return True if the row carries the column with the expected value."""
        if row is None or self.column not in row:
            return False
        return str(row[self.column]) == self.value

    def __str__(self) -> str:
        return f"{self.column}=eq.{self.value}"


def parse_row_filter(expression: str) -> RowFilter:
    """
    Parse a `column=eq.value` filter expression.

    Only equality is supported; anything else raises InvalidRowFilterError.
    """
    column, sep, rest = expression.partition("=")
    operator, dot, value = rest.partition(".")
    column = column.strip()
    if not sep or not dot or not column.isidentifier() or not value:
        raise InvalidRowFilterError(
            f"Invalid filter: '{expression}'. Expected the form 'column=eq.value'.",
        )
    if operator != "eq":
        raise InvalidRowFilterError(f"Unsupported filter operator: '{operator}'")
    return RowFilter(column=column, value=value)


def parse_change_kinds(values: Iterable[str]) -> frozenset[ChangeKind]:
    """Parse event names ('INSERT', 'UPDATE', 'DELETE' or '*') into change kinds."""
    kinds: set[ChangeKind] = set()
    for value in values:
        name = value.strip().upper()
        if name == "*":
            return ALL_KINDS
        try:
            kinds.add(ChangeKind(name))
        except ValueError:
            raise InvalidRowFilterError(f"Unknown event: '{value}'") from None
    return frozenset(kinds) or ALL_KINDS


@dataclass(frozen=True)
class ChangeEvent:
    """A committed mutation of one row."""

    table: str
    kind: ChangeKind
    record: dict[str, Any] | None
    old_record: dict[str, Any] | None
    commit_timestamp: str

    @property
    def row(self) -> dict[str, Any] | None:
        """The row used for filter matching: the old row for deletes, the new one otherwise."""
        if self.kind is ChangeKind.DELETE:
            return self.old_record
        return self.record

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible representation sent to subscribers."""
        return {
            "table": self.table,
            "type": self.kind.value,
            "record": self.record,
            "old_record": self.old_record,
            "commit_timestamp": self.commit_timestamp,
        }

    def to_json(self) -> str:
        """Serialize for transport over Redis or SSE."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, payload: str) -> "ChangeEvent":
        """Inverse of to_json; raises ValueError/KeyError on malformed payloads."""
        data = json.loads(payload)
        return cls(
            table=data["table"],
            kind=ChangeKind(data["type"]),
            record=data.get("record"),
            old_record=data.get("old_record"),
            commit_timestamp=data["commit_timestamp"],
        )


class FeedSubscription:
    """
    Queue of change events matching one subscriber's table, kinds and filters.

    Iterate with `async for`; iteration ends once the subscription is closed.
    When the queue is full, new events are dropped: subscribers treat every
    event as a signal to re-read, so one queued event already covers them.
    """

    def __init__(
        self,
        feed: "ChangeFeed",
        table: str,
        filters: tuple[RowFilter, ...],
        kinds: frozenset[ChangeKind],
        max_queue: int,
    ) -> None:
        self._feed = feed
        self.table = table
        self.filters = filters
        self.kinds = kinds
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue(maxsize=max_queue)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        return self._closed

    def accepts(self, event: ChangeEvent) -> bool:
        """Check table, kind and every row filter against the event."""
        if self._closed or event.table != self.table or event.kind not in self.kinds:
            return False
        row = event.row
        return all(f.matches(row) for f in self.filters)

    def offer(self, event: ChangeEvent) -> None:
        """Enqueue without blocking, dropping the event if the queue is full."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug(
                "change_feed_event_dropped",
                extra={"table": self.table, "dropped": self.dropped},
            )

    async def get(self) -> ChangeEvent | None:
        """Wait for the next event; None means the subscription was closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        """Detach from the feed and wake any waiting consumer."""
        if self._closed:
            return
        self._closed = True
        self._feed.unsubscribe(self)
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self) -> "FeedSubscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeFeed:
    """Fan-out of change events to subscribers, optionally across processes via Redis."""

    def __init__(self, redis_client: RedisClient | None = None, queue_size: int = 100) -> None:
        self._redis = redis_client
        self._queue_size = queue_size
        self._subscriptions: set[FeedSubscription] = set()
        self._listener: asyncio.Task[None] | None = None

    @property
    def subscriber_count(self) -> int:
        """Number of open subscriptions in this process."""
        return len(self._subscriptions)

    @property
    def uses_redis(self) -> bool:
        """True while the Redis listener task is running."""
        return self._listener is not None and not self._listener.done()

    async def start(self) -> None:
        """Start the Redis listener if Redis is connected."""
        if self._redis is None or not self._redis.is_connected:
            logger.info("Change feed using in-process fan-out")
            return
        self._listener = asyncio.create_task(self._listen(), name="change-feed-listener")
        logger.info("Change feed listening on Redis")

    async def stop(self) -> None:
        """Stop the listener and close every open subscription."""
        if self._listener is not None:
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener
            self._listener = None
        for subscription in list(self._subscriptions):
            subscription.close()

    def subscribe(
        self,
        table: str,
        filters: Iterable[RowFilter] = (),
        kinds: frozenset[ChangeKind] = ALL_KINDS,
    ) -> FeedSubscription:
        """Open a subscription; the caller must close it."""
        subscription = FeedSubscription(
            self, table, tuple(filters), kinds, self._queue_size,
        )
        self._subscriptions.add(subscription)
        logger.debug(
            "change_feed_subscribed",
            extra={"table": table, "filters": [str(f) for f in subscription.filters]},
        )
        return subscription

    def unsubscribe(self, subscription: FeedSubscription) -> None:
        """Forget a subscription; called by FeedSubscription.close()."""
        self._subscriptions.discard(subscription)

    async def publish(self, event: ChangeEvent) -> None:
        """Publish a committed change to every matching subscriber."""
        if self.uses_redis and self._redis is not None:
            if await self._redis.publish(f"{CHANNEL_PREFIX}{event.table}", event.to_json()):
                return
            logger.warning("redis_unavailable", extra={"operation": "change_feed_publish"})
        self.dispatch(event)

    def dispatch(self, event: ChangeEvent) -> None:
        """Deliver an event to the matching subscriptions of this process."""
        for subscription in list(self._subscriptions):
            if subscription.accepts(event):
                subscription.offer(event)

    async def _listen(self) -> None:
        """Relay Redis messages to local subscribers until cancelled."""
        if self._redis is None:
            return
        async for channel, payload in self._redis.listen(f"{CHANNEL_PREFIX}*"):
            try:
                event = ChangeEvent.from_json(payload)
            except (ValueError, KeyError):
                logger.warning("Ignoring malformed change event on %s", channel)
                continue
            self.dispatch(event)
        logger.warning("Change feed Redis listener ended, falling back to in-process fan-out")


# Global change feed state using a container to avoid global statement
class _FeedState:
    """Container for the process-wide change feed."""

    feed: ChangeFeed | None = None


_state = _FeedState()


def get_change_feed() -> ChangeFeed:
    """Get the process-wide change feed, creating an in-process one on first use."""
    if _state.feed is None:
        _state.feed = ChangeFeed()
    return _state.feed


def set_change_feed(feed: ChangeFeed | None) -> None:
    """Replace the process-wide change feed."""
    _state.feed = feed
