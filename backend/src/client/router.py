"""The two routes of the client and navigation between them."""
import logging
from collections.abc import Callable
from enum import Enum

from client.subscriptions import Subscription

logger = logging.getLogger(__name__)

NavigationListener = Callable[["Route"], None]


class Route(Enum):
    """Unauthenticated entry route and authenticated dashboard route."""

    ENTRY = "/"
    DASHBOARD = "/dashboard"


class Router:
    """Holds the current route; navigating notifies listeners synchronously."""

    def __init__(self, initial: Route = Route.ENTRY) -> None:
        self.current = initial
        self.history: list[Route] = [initial]
        self._listeners: list[NavigationListener] = []

    def navigate(self, route: Route) -> None:
        """Go to a route. Navigating to the current route does nothing."""
        if route is self.current:
            return
        logger.info("navigate", extra={"from": self.current.value, "to": route.value})
        self.current = route
        self.history.append(route)
        for listener in list(self._listeners):
            listener(route)

    def on_navigate(self, callback: NavigationListener) -> Subscription:
        """Register a navigation listener."""
        self._listeners.append(callback)

        def release() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return Subscription(release, name="router")
