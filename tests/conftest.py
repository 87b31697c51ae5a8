# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# Sets test environment variables before the application is imported (the
# module-level app in app.main reads settings at import time) and provides
# fixtures for building the app against an in-memory database double.
# =============================================================================

import base64
import os

os.environ.setdefault("DEV_MODE", "test")
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB", "job_portal_test")

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.context import AppContext
from app.main import create_app

WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"job-portal-test-webhook-secret!").decode()
SERVER_URL = "https://jobs.example.com"


class FakeCursor:
    """Stands in for a Motor cursor: chainable skip/limit plus async iteration."""

    def __init__(self, documents):
        self.documents = list(documents)

    def skip(self, count):
        return self

    def limit(self, count):
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for document in self.documents:
            yield document


def make_collection():
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock()
    collection.update_one = AsyncMock()
    collection.delete_one = AsyncMock()
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.find = MagicMock(return_value=FakeCursor([]))
    return collection


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        dev_mode="test",
        server_url=SERVER_URL,
        clerk_webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def fake_db():
    return SimpleNamespace(
        users=make_collection(),
        jobs=make_collection(),
        connect=AsyncMock(),
        close=AsyncMock(),
    )


@pytest.fixture
def make_client(settings, fake_db):
    """Build a TestClient; ``route_groups`` swaps in stub groups by prefix."""
    clients = []

    def _make(route_groups=None, settings_override=None):
        context = AppContext(settings=settings_override or settings, db=fake_db)
        client = TestClient(create_app(context, route_groups=route_groups))
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()
