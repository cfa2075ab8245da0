"""Handles for registered listeners and background subscriptions."""
import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from types import TracebackType

logger = logging.getLogger(__name__)

Release = Callable[[], Awaitable[None] | None]


class Subscription:
    """
    Handle returned by every registration call.

    close() releases the registration exactly once; further calls do nothing.
    Usable as an async context manager so the owner can scope it.
    """

    def __init__(self, release: Release, *, name: str = "") -> None:
        self._release: Release | None = release
        self.name = name

    @property
    def closed(self) -> bool:
        """True once the registration has been released."""
        return self._release is None

    async def close(self) -> None:
        """Release the registration."""
        release, self._release = self._release, None
        if release is None:
            return
        result = release()
        if inspect.isawaitable(result):
            await result
        logger.debug("subscription_closed", extra={"subscription": self.name})

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<Subscription {self.name or '?'} {state}>"


def task_subscription(task: asyncio.Task, *, name: str = "") -> Subscription:
    """
    Wrap a background task so closing the subscription cancels it.

    The task is awaited unless the close happens from inside the task itself,
    in which case cancellation takes effect at its next suspension point.
    """

    async def release() -> None:
        task.cancel()
        if task is asyncio.current_task():
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    return Subscription(release, name=name)
