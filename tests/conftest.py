"""Shared test fixtures and configuration."""
import asyncio
import json
import os
import struct
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("COMPANY_NAME", "NewTelco")

from app.main import app
from app.core.config import settings
from app.db.database import get_db
from app.db.models import Base
from app.services.agent.orchestrator import ConversationOrchestrator
from app.services.gateway.relay import ClientConnection, RelayGateway
from app.services.realtime.upstream import UpstreamChannel
from app.services.session.registry import SessionRegistry


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

_CLOSE = object()


class FakeUpstreamSocket:
    """Scripted stand-in for the upstream realtime WebSocket.

    Sent frames are decoded and recorded; inbound frames are queued with
    ``push`` and yielded to the channel's reader in order.
    """

    def __init__(self):
        self.sent = []
        self.closed = False
        self.close_code = None
        self.close_reason = None
        self.send_error = None
        self._inbound = asyncio.Queue()

    async def send(self, message):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(json.loads(message))

    async def close(self):
        if not self.closed:
            self.closed = True
            self._inbound.put_nowait(_CLOSE)

    def push(self, message):
        """Queue an inbound upstream message (dict) or an exception to raise."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self._inbound.put_nowait(message)

    def remote_close(self, code=1000, reason=""):
        """Simulate the upstream closing the connection."""
        self.close_code = code
        self.close_reason = reason
        self.closed = True
        self._inbound.put_nowait(_CLOSE)

    def sent_types(self):
        return [message["type"] for message in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbound.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeConnector:
    """Replaces ``websockets.asyncio.client.connect`` for UpstreamChannel."""

    def __init__(self, error=None, send_error=None):
        self.error = error
        self.send_error = send_error
        self.calls = []
        self.sockets = []

    async def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        socket = FakeUpstreamSocket()
        socket.send_error = self.send_error
        self.sockets.append(socket)
        return socket

    @property
    def last_socket(self):
        return self.sockets[-1]


class RecordingClient(ClientConnection):
    """Client connection that records every emitted event."""

    def __init__(self):
        self.events = []
        self._arrived = asyncio.Event()

    async def emit(self, event, data):
        self.events.append((event, data))
        self._arrived.set()

    def of(self, event):
        return [data for name, data in self.events if name == event]

    async def wait_for(self, event, count=1, timeout=2.0):
        """Wait until ``count`` events named ``event`` were emitted."""

        async def _wait():
            while len(self.of(event)) < count:
                self._arrived.clear()
                await self._arrived.wait()

        await asyncio.wait_for(_wait(), timeout)
        return self.of(event)


def make_message_response(text):
    """Completion response holding a single assistant message."""
    return SimpleNamespace(
        output=[
            SimpleNamespace(
                type="message",
                content=[SimpleNamespace(type="output_text", text=text)],
            )
        ]
    )


def make_function_call_response(name, arguments, call_id="call_1"):
    """Completion response requesting one tool call."""
    return SimpleNamespace(
        output=[
            SimpleNamespace(
                type="function_call",
                name=name,
                arguments=json.dumps(arguments),
                call_id=call_id,
            )
        ]
    )


def make_wav(seconds=2.0, sample_rate=16000):
    """Silent 16-bit mono PCM WAV of the given length."""
    byte_rate = sample_rate * 2
    data_size = int(seconds * byte_rate)
    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,
        1,
        sample_rate,
        byte_rate,
        2,
        16,
        b"data",
        data_size,
    )
    return header + b"\x00" * data_size


@pytest.fixture
def wav_bytes():
    return make_wav()


@pytest.fixture
def wav_factory():
    return make_wav


@pytest.fixture
def message_response():
    return make_message_response


@pytest.fixture
def function_call_response():
    return make_function_call_response


@pytest.fixture
def mock_openai():
    """Mock OpenAI API client (Responses API and audio endpoints)."""
    mock_client = Mock()
    mock_client.responses.create = AsyncMock(return_value=make_message_response("Test response"))
    mock_client.audio.transcriptions.create = AsyncMock(return_value=Mock(text="Test transcription"))
    mock_client.audio.translations.create = AsyncMock(return_value=Mock(text="Test translation"))
    return mock_client


@pytest.fixture
def fake_connector():
    return FakeConnector()


@pytest.fixture
def registry():
    return SessionRegistry(idle_timeout_seconds=1800, sweep_interval_seconds=60)


@pytest.fixture
def orchestrator(registry, mock_openai):
    return ConversationOrchestrator(
        registry,
        client=mock_openai,
        company_name="NewTelco",
        max_tool_iterations=8,
    )


@pytest.fixture
def channel_factory(fake_connector):
    """Channel factory wiring UpstreamChannel to the fake connector."""

    def _factory(**kwargs):
        return UpstreamChannel(
            api_key="test-key",
            model="gpt-4o-realtime-preview-2025-06-03",
            voice="sage",
            connector=fake_connector,
            connect_timeout=1.0,
            **kwargs,
        )

    return _factory


@pytest.fixture
def gateway(registry, orchestrator, channel_factory):
    return RelayGateway(registry, orchestrator, channel_factory=channel_factory, supervisor_enabled=True)


@pytest.fixture
def recording_client():
    return RecordingClient()


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_db(test_db_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest.fixture
def override_get_db(test_db_engine):
    """Override get_db dependency with the test database."""
    async_session = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async def _override_get_db():
        async with async_session() as session:
            yield session

    return _override_get_db


@pytest.fixture
def test_client(gateway):
    """Create FastAPI test client bound to the test gateway."""
    app.state.gateway = gateway

    client = TestClient(app)

    yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(override_get_db, gateway, tmp_path, monkeypatch):
    """Async HTTP client for routes that touch the database."""
    app.dependency_overrides[get_db] = override_get_db
    app.state.gateway = gateway
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path))

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()
