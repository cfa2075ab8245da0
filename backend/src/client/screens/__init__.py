"""Entry and dashboard screens."""
from client.screens.base import LoadingView, Screen
from client.screens.dashboard import DashboardScreen, DashboardView
from client.screens.entry import EntryScreen, EntryView

__all__ = [
    "DashboardScreen",
    "DashboardView",
    "EntryScreen",
    "EntryView",
    "LoadingView",
    "Screen",
]
