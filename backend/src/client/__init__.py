"""Client-side state synchronization for Smart Bookmark."""
from client.app import App
from client.backend import Backend, BackendError, HttpBackend
from client.config import ClientSettings
from client.router import Route, Router

__all__ = [
    "App",
    "Backend",
    "BackendError",
    "ClientSettings",
    "HttpBackend",
    "Route",
    "Router",
]
