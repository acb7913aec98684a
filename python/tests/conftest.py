"""Pytest configuration and fixtures for Codeloom tests.

Test isolation strategy:
- Every test runs with CODELOOM_ENV=test and a fresh settings cache
- The model transport is replaced by ScriptedAdapter (no network, no real keys)
- Stores are in-memory unless a test asks for the SQL store
- Retry delays go through RecordingSleep, so no test ever waits
"""

import os

os.environ.setdefault("CODELOOM_ENV", "test")

import pytest
from fastapi.testclient import TestClient

from codeloom.app import add_request_id_middleware, create_app
from codeloom.config import clear_settings_cache
from codeloom.services.llm.dispatch import Dispatcher
from codeloom.services.llm.prompt import RequestBuilder
from codeloom.services.quota import QuotaGovernor
from codeloom.services.types import Tier
from codeloom.services.workspace import Workspace, WorkspaceServices
from codeloom.storage.records import ProjectConfig, UserRecord
from codeloom.storage.sessions import InMemorySessionStore
from codeloom.storage.users import InMemoryUserStore
from tests.helpers import (
    TEST_API_KEY,
    TEST_MODEL,
    FixedClock,
    RecordingSleep,
    ScriptedAdapter,
    utc,
)


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Run every test against test-environment settings."""
    monkeypatch.setenv("CODELOOM_ENV", "test")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def user_store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def free_user(user_store) -> UserRecord:
    user = UserRecord(id="user-free")
    user_store.save(user)
    return user


@pytest.fixture
def premium_user(user_store) -> UserRecord:
    user = UserRecord(id="user-premium", tier=Tier.PREMIUM)
    user_store.save(user)
    return user


@pytest.fixture
def make_services(session_store, user_store, recording_sleep):
    """Factory for WorkspaceServices around a scripted adapter."""

    def _make(adapter: ScriptedAdapter, *, daily_limit: int = 20, now=None):
        return WorkspaceServices(
            builder=RequestBuilder(TEST_MODEL),
            dispatcher=Dispatcher(adapter, api_key=TEST_API_KEY, sleep=recording_sleep),
            quota=QuotaGovernor(daily_limit),
            sessions=session_store,
            users=user_store,
            clock=FixedClock(),
            utcnow=now or (lambda: utc(2024, 1, 2)),
        )

    return _make


@pytest.fixture
def make_workspace(make_services):
    """Factory for a fresh creator-mode workspace."""

    def _make(adapter: ScriptedAdapter, *, artifact: str = "", **services_kwargs) -> Workspace:
        services = make_services(adapter, **services_kwargs)
        return Workspace(
            services,
            name="a portfolio site",
            config=ProjectConfig(prompt="a portfolio site"),
            owner_id="user-free",
            artifact=artifact,
        )

    return _make


@pytest.fixture
def make_client(session_store, user_store, recording_sleep):
    """Factory for a TestClient whose app talks to a scripted adapter."""
    clients: list[TestClient] = []

    def _make(adapter: ScriptedAdapter) -> TestClient:
        app = create_app(
            llm_adapter=adapter,
            session_store=session_store,
            user_store=user_store,
            dispatcher_options={"sleep": recording_sleep},
        )
        add_request_id_middleware(app)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def save_spy(monkeypatch, session_store):
    """Record every session save."""
    saved = []
    original = session_store.save

    def spy(record):
        saved.append(record)
        original(record)

    monkeypatch.setattr(session_store, "save", spy)
    return saved
