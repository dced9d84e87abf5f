"""
Pytest configuration shared by unit and integration tests

Every test gets its own SQLite database and encryption key, and no test
sleeps in HTTP retry backoff or reaches the network.
"""

from __future__ import annotations

import base64
from collections.abc import Callable, Iterator

import httpx
import pytest
from cryptography.fernet import Fernet

from supportq.infrastructure import http as http_module
from supportq.infrastructure.database import init_database, reset_pool

_ISOLATED_ENV = (
    "SUPPORTQ_USE_LLM",
    "AUTH_REQUIRED",
    "SUPPORTQ_SCHEDULER_ENABLED",
    "SUPPORTQ_DEFAULT_USER_ID",
    "SHOPIFY_API_VERSION",
)


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch) -> Iterator[None]:
    """Fresh database, Fernet key and in-memory state for each test."""
    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SUPPORTQ_DB_PATH", str(tmp_path / "supportq-test.db"))
    monkeypatch.setenv("SUPPORTQ_ENCRYPTION_KEY", Fernet.generate_key().decode())

    reset_pool()
    init_database()

    from supportq.api.middleware.user_auth import clear_token_cache
    from supportq.gmail.client import GMAIL_CIRCUIT
    from supportq.gmail.sync import POLL_GUARD
    from supportq.observability import telemetry
    from supportq.proposals import service

    GMAIL_CIRCUIT.reset()
    telemetry.reset()
    POLL_GUARD._active.clear()
    service._executing.clear()
    clear_token_cache()

    yield

    reset_pool()


@pytest.fixture(autouse=True)
def no_backoff_sleep(monkeypatch) -> list[float]:
    """Record retry waits instead of sleeping."""
    waits: list[float] = []
    monkeypatch.setattr(http_module, "_sleep", waits.append)
    return waits


@pytest.fixture
def mock_http() -> Iterator[Callable[[Callable[[httpx.Request], httpx.Response]], httpx.Client]]:
    """Build an httpx.Client whose requests go to handler."""
    clients: list[httpx.Client] = []

    def build(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield build

    for client in clients:
        client.close()


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def gmail_message(
    message_id: str,
    text: str,
    history_id: str = "100",
    subject: str = "Order help",
    sender: str = "Jane Doe <jane@example.com>",
) -> dict:
    """A users.messages.get(format=full) payload with a text/plain body."""
    return {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "historyId": history_id,
        "snippet": text[:60],
        "labelIds": ["INBOX", "Label_support"],
        "payload": {
            "mimeType": "text/plain",
            "headers": [
                {"name": "From", "value": sender},
                {"name": "To", "value": "support@shop.example"},
                {"name": "Subject", "value": subject},
                {"name": "Date", "value": "Mon, 14 Oct 2024 10:00:00 +0000"},
            ],
            "body": {"data": b64url(text)},
        },
    }
