"""
Pytest configuration and shared fixtures.

Redis is replaced by fakeredis and the webhook by an httpx.MockTransport, so
the suite needs no external services. Each test gets its own SQLite file.
"""

import json
import threading
import time

import fakeredis
import httpx
import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from message_relay.config import Settings, get_settings
get_settings.cache_clear()

from message_relay.cache import MessageCacheRepository  # noqa: E402
from message_relay.sender import MessageSender  # noqa: E402
from message_relay.storage import (  # noqa: E402
    MessageRepository,
    create_db_engine,
    create_session_factory,
    init_db,
)

WEBHOOK_URL = "http://webhook.test/webhook"
WEBHOOK_AUTH_KEY = "test-auth-key"


class WebhookStub:
    """
    Request handler for httpx.MockTransport that plays the external channel.

    Answers 202 with a fresh messageId, except for recipients in `failing`,
    which get a 500.
    """

    def __init__(self):
        self.requests = []
        self.failing = set()
        self._counter = 0
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        with self._lock:
            self.requests.append(request)
            if body["to"] in self.failing:
                return httpx.Response(500, json={"error": "server error"})
            self._counter += 1
            external_id = f"ext-{self._counter}"
        return httpx.Response(202, json={"message": "Accepted", "messageId": external_id})

    @property
    def recipients(self):
        with self._lock:
            return [json.loads(r.content)["to"] for r in self.requests]


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll until predicate() is truthy or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def engine(tmp_path):
    """SQLite engine with the schema applied."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'messages.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def repository(engine) -> MessageRepository:
    return MessageRepository(create_session_factory(engine))


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def broken_redis_client():
    """Redis client whose server is unreachable; every command raises ConnectionError."""
    server = fakeredis.FakeServer()
    server.connected = False
    return fakeredis.FakeRedis(server=server, decode_responses=True)


class RepeatingScanRedis(fakeredis.FakeRedis):
    """SCAN reports every matching key twice, as Redis may during a rehash."""

    def scan(self, *args, **kwargs):
        cursor, keys = super().scan(*args, **kwargs)
        return cursor, list(keys) + list(keys)


@pytest.fixture
def repeating_scan_redis_client():
    return RepeatingScanRedis(decode_responses=True)


@pytest.fixture
def cache(redis_client) -> MessageCacheRepository:
    return MessageCacheRepository(redis_client, ttl_seconds=3600)


@pytest.fixture
def webhook() -> WebhookStub:
    return WebhookStub()


@pytest.fixture
def sender(webhook):
    sender = MessageSender(WEBHOOK_URL, WEBHOOK_AUTH_KEY, transport=httpx.MockTransport(webhook))
    yield sender
    sender.close()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'api.db'}",
        WEBHOOK_URL=WEBHOOK_URL,
        WEBHOOK_AUTH_KEY=WEBHOOK_AUTH_KEY,
        SCHEDULER_INTERVAL_SECONDS=0.05,
        SCHEDULER_BATCH_SIZE=10,
        SCHEDULER_AUTOSTART=False,
        LOG_LEVEL="INFO",
    )
