"""Fixtures for client tests: one shared store, one tab's backend, a router."""
import pytest

from client.router import Router
from client.types import User

from fakes import FakeBackend, FakeStore


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def backend(store: FakeStore) -> FakeBackend:
    return FakeBackend(store)


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def alice(store: FakeStore) -> User:
    return store.add_user("alice@example.com")


@pytest.fixture
def bob(store: FakeStore) -> User:
    return store.add_user("bob@example.com")
