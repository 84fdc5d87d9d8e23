"""
Test configuration and fixtures.
Uses SQLite in-memory for store tests and in-memory backends for the pipeline.
Mocks all external services (Redis, alert webhooks).
"""
import json
import time

import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from hookgate.config import Settings
from hookgate.database import Base
from hookgate.models.webhook_event import WebhookEvent  # noqa: F401 - registers the table
from hookgate.schemas.webhook_payloads import SOURCE_HEADERS, WebhookSource
from hookgate.services.default_handlers import register_default_handlers
from hookgate.services.event_store import InMemoryEventStore
from hookgate.services.handler_registry import HandlerRegistry
from hookgate.services.webhook_dispatch import WebhookDispatcher
from hookgate.services.webhook_ledger import WebhookLedger
from hookgate.utils.dedup import InMemoryProcessedEventCache
from hookgate.utils.webhook_signatures import generate_signature_header

STRIPE_SECRET = "whsec_test_secret"
GITHUB_SECRET = "github-test-secret"
CLERK_SECRET = "clerk-test-secret"
TEST_SECRET = "test-secret"
ADMIN_KEY = "admin-test-key"


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def session_factory():
    """In-memory SQLite database; yields a session factory bound to it."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        app_env="test",
        stripe_webhook_secret=STRIPE_SECRET,
        github_webhook_secret=GITHUB_SECRET,
        clerk_webhook_secret=CLERK_SECRET,
        test_webhook_secret=TEST_SECRET,
        webhook_skip_verification_sources="",
        webhook_handler_timeout_seconds=5.0,
        idempotency_cache_backend="memory",
        redaction_extra_patterns="",
        admin_api_key=ADMIN_KEY,
        alert_webhook_url="",
    )


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("hookgate.utils.dedup.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.exists = AsyncMock(return_value=0)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
def mock_alert():
    return AsyncMock()


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def cache():
    return InMemoryProcessedEventCache()


@pytest.fixture
def ledger(store, cache, mock_alert):
    return WebhookLedger(store=store, cache=cache, alert=mock_alert)


@pytest.fixture
def registry():
    return register_default_handlers(HandlerRegistry())


@pytest.fixture
def dispatcher(ledger, registry, settings, mock_alert):
    return WebhookDispatcher(ledger, registry, settings, alert=mock_alert)


_SECRETS = {
    WebhookSource.STRIPE: STRIPE_SECRET,
    WebhookSource.GITHUB: GITHUB_SECRET,
    WebhookSource.CLERK: CLERK_SECRET,
    WebhookSource.TEST: TEST_SECRET,
}


@pytest.fixture
def sign():
    """
    Build (body, headers) for a delivery signed with the test secrets.
    Extra headers (event type, delivery id) are merged in as given.
    """
    def _sign(source, payload, headers=None, timestamp=None, secret=None):
        source = WebhookSource(source)
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        if source == WebhookSource.STRIPE and timestamp is None:
            timestamp = int(time.time())
        signature = generate_signature_header(
            source, body, secret or _SECRETS[source], timestamp=timestamp,
        )
        merged = {SOURCE_HEADERS[source][0]: signature}
        merged.update(headers or {})
        return body, merged

    return _sign


@pytest.fixture
def stripe_invoice_paid():
    return {
        "id": "evt_1",
        "object": "event",
        "type": "invoice.paid",
        "data": {
            "object": {
                "id": "in_1",
                "object": "invoice",
                "customer": "cus_1",
                "amount_paid": 25000,
                "customer_email": "jane@example.com",
            },
        },
    }


@pytest.fixture
def github_push():
    return {
        "ref": "refs/heads/main",
        "after": "def456",
        "repository": {"id": 12345, "full_name": "octo-org/hello"},
        "sender": {"login": "octocat", "id": 1, "email": "octocat@github.com"},
        "pusher": {"name": "octocat", "email": "octocat@github.com"},
        "commits": [
            {
                "id": "def456",
                "author": {"name": "Octo Cat", "email": "octocat@github.com"},
                "committer": {"name": "Octo Cat", "email": "octocat@github.com"},
            },
        ],
    }


@pytest.fixture
def clerk_user_deleted():
    return {
        "object": "event",
        "type": "user.deleted",
        "data": {"id": "user_123", "deleted": True, "object": "user"},
    }
