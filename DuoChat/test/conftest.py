"""
Test configuration and fixtures for DuoChat server tests.

Provides:
- Test configuration
- Data generators (users, JWT tokens)
- A fake websocket that records what the server sends
- Service, store and gateway fixtures backed by a temporary SQLite file
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import jwt
import pytest
import pytest_asyncio
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosedOK
from websockets.protocol import State

from DuoChat.config import config as app_config
from DuoChat.core.logging import configure_logging, create_testing_config
from DuoChat.core.server.gateway import ConnectionGateway
from DuoChat.core.server.services import create_services

TEST_SECRET = "duochat-test-secret"


@dataclass
class TestConfig:
    """Configuration for server tests."""
    host: str = "localhost"
    port: int = 18765
    api_port: int = 18766
    jwt_secret: str = TEST_SECRET
    bcrypt_rounds: int = 4

    @property
    def ws_url(self) -> str:
        return f"ws://{self.host}:{self.port}"


class TestDataGenerator:
    """Generate test data for server tests."""

    @staticmethod
    def generate_jwt_token(user_id: str, secret: str = TEST_SECRET,
                           expires_in: int = 3600, claim: str = "sub") -> str:
        """Generate a test JWT token."""
        issued = int(time.time())
        payload = {
            claim: user_id,
            "exp": issued + expires_in,
            "iat": issued,
        }
        return jwt.encode(payload, secret, algorithm="HS256")

    @staticmethod
    def generate_user_payloads(count: int = 3) -> List[Dict[str, str]]:
        """Generate signup payloads."""
        return [
            {
                "name": f"Test User {i}",
                "email": f"test_user_{i}@example.com",
                "password": f"password_{i}",
            }
            for i in range(count)
        ]


class FakeRequest:
    def __init__(self, path: str, headers: Optional[Dict[str, str]] = None):
        self.path = path
        self.headers = Headers(headers or {})


class FakeWebSocket:
    """
    Stand-in for a websockets ``ServerConnection``.

    Records sent frames and the close code; iterating it yields the
    frames given at construction, then ends as if the peer hung up.
    """

    def __init__(self, path: str = "/", headers: Optional[Dict[str, str]] = None,
                 frames: Iterable[str] = ()):
        self.request = FakeRequest(path, headers)
        self.state = State.OPEN
        self.sent: List[str] = []
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self._frames = list(frames)

    async def send(self, message: str) -> None:
        if self.state is not State.OPEN:
            raise ConnectionClosedOK(None, None)
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_code = code
        self.close_reason = reason
        self.state = State.CLOSED

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self._frames:
            yield frame

    @property
    def events(self) -> List[Dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]

    def named(self, name: str) -> List[Any]:
        """Payloads of every received event called ``name``."""
        return [e["data"] for e in self.events if e["event"] == name]

    def clear(self) -> None:
        self.sent.clear()


def frame(event: str, **data: Any) -> str:
    """Encode a client frame."""
    return json.dumps({"event": event, "data": data})


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    return TestConfig()


@pytest.fixture(scope="session")
def test_data_generator() -> TestDataGenerator:
    return TestDataGenerator()


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch, test_config):
    """Keep bcrypt cheap in tests."""
    monkeypatch.setattr(app_config, "BCRYPT_ROUNDS", test_config.bcrypt_rounds)


@pytest.fixture(scope="session", autouse=True)
def test_logging():
    configure_logging(create_testing_config())


@pytest.fixture
def services(tmp_path, test_config):
    """Fresh component graph on a temporary database."""
    svc = create_services(
        db_path=str(tmp_path / "duochat_test.db"),
        upload_dir=str(tmp_path / "uploads"),
        jwt_secret=test_config.jwt_secret,
    )
    yield svc
    svc.close()


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def gateway(services):
    return ConnectionGateway(services)


@pytest_asyncio.fixture
async def make_user(store):
    """Factory creating users directly in the store."""
    async def _make(name: str, email: str = None):
        return await store.create_user(
            name=name,
            email=email or f"{name.lower()}@example.com",
            password_hash="not-a-real-hash",
        )
    return _make


@pytest_asyncio.fixture
async def alice(make_user):
    return await make_user("Alice")


@pytest_asyncio.fixture
async def bob(make_user):
    return await make_user("Bob")


@pytest_asyncio.fixture
async def carol(make_user):
    return await make_user("Carol")


@pytest_asyncio.fixture
async def connect(gateway, test_data_generator):
    """Open an authenticated fake socket for a user through the gateway."""
    async def _connect(user):
        token = test_data_generator.generate_jwt_token(user.id)
        ws = FakeWebSocket(path=f"/?token={token}")
        context = await gateway.connect(ws)
        assert context is not None
        return ws, context
    return _connect


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
