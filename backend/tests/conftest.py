"""Shared test fixtures and configuration for backend tests.

Engine unit tests drive ``ChatManager`` directly with ``FakeSocket`` objects
standing in for WebSocket connections; end-to-end tests use a ``TestClient``
over an app built with an in-memory DuckDB.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from pairchat.auth.service import TokenService
from pairchat.chat.manager import ChatManager
from pairchat.config import AppSettings, JWTSecrets, Secrets, StoreSettings
from pairchat.main import create_app
from pairchat.store import ChatStore, StoreGateway

TEST_SECRET = "test-secret-key"


class FakeSocket:
    """Records every event sent to it.

    Set ``fail`` to behave like a dead socket, or ``stall`` to behave like a
    peer that stopped reading: sends then never complete.
    """

    def __init__(self):
        self.sent = []
        self.fail = False
        self.stall = False

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        if self.stall:
            await asyncio.Event().wait()
        self.sent.append(data)

    def of_type(self, event_type):
        return [e for e in self.sent if e["type"] == event_type]

    def clear(self):
        self.sent.clear()


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    """Fresh in-memory store per test."""
    s = ChatStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def gateway(store):
    return StoreGateway(store, timeout_seconds=2.0)


@pytest.fixture
def tokens():
    return TokenService(TEST_SECRET)


@pytest.fixture
def manager(gateway, tokens):
    return ChatManager(gateway, tokens)


@pytest.fixture
def alice(store):
    return store.create_user("alice@example.com", is_verified=True)


@pytest.fixture
def bob(store):
    return store.create_user("bob@example.com", display_name="Bob", is_verified=True)


@pytest.fixture
def carol(store):
    return store.create_user("carol@example.com", is_verified=True)


@pytest.fixture
def chat(store, alice, bob):
    """The alice/bob chat."""
    created, _ = store.find_or_create_chat(alice.id, bob.id)
    return created


@pytest.fixture
def connect(manager):
    """Open a live session for a user on a FakeSocket.

    The socket is reachable as ``session.websocket``.
    """
    async def _connect(user):
        return await manager.open_session(FakeSocket(), user)

    return _connect


# ---------------------------------------------------------------------------
# Application fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    return AppSettings(
        store=StoreSettings(db_path=":memory:"),
        secrets=Secrets(jwt=JWTSecrets(secret_key=TEST_SECRET)),
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def api_client(app):
    """Provide a TestClient with the app's lifespan running."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def seed_user(app):
    """Create a user directly in the app's store."""
    def _seed(email, verified=True, display_name=None):
        return app.state.store.create_user(
            email, display_name=display_name, is_verified=verified
        )

    return _seed


@pytest.fixture
def token_for(app):
    def _token(user):
        return app.state.chat_manager.tokens.issue(user.id)

    return _token


@pytest.fixture
def auth_headers(token_for):
    def _headers(user):
        return {"Authorization": f"Bearer {token_for(user)}"}

    return _headers
