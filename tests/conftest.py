"""Shared fixtures for the dealflow test suite.

Provides:
- Deterministic settings (worker secret, JWT key, no webhook secrets)
- In-memory repositories and scripted generative/provider clients
- An ASGI client over ``create_app()`` with services placed on app.state
  directly (the lifespan is not run, so no database or Redis is needed)
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator

os.environ.setdefault("WORKER_SECRET", "test-worker-secret")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("FIREFLIES_WEBHOOK_SECRET", "")
os.environ.setdefault("GRANOLA_WEBHOOK_SECRET", "")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.dealflow.config import get_settings
from tests.fakes import (
    FakeDriveClient,
    FakeFirefliesClient,
    FakeGenerativeClient,
    InMemoryCRMRepository,
    InMemoryIntegrationRepository,
    InMemoryJobRepository,
)

get_settings.cache_clear()

STATE_SERVICES = (
    "job_repository",
    "crm_repository",
    "integration_repository",
    "pipeline",
    "reaper",
    "worker_pool",
    "stale_scanner",
    "dispatcher",
    "ingestion_gateway",
    "owner_resolver",
    "backfill",
)


@pytest.fixture
def job_repo() -> InMemoryJobRepository:
    return InMemoryJobRepository()


@pytest.fixture
def crm_repo() -> InMemoryCRMRepository:
    return InMemoryCRMRepository()


@pytest.fixture
def integration_repo() -> InMemoryIntegrationRepository:
    return InMemoryIntegrationRepository()


@pytest.fixture
def llm() -> FakeGenerativeClient:
    return FakeGenerativeClient()


@pytest.fixture
def drive() -> FakeDriveClient:
    return FakeDriveClient()


@pytest.fixture
def fireflies() -> FakeFirefliesClient:
    return FakeFirefliesClient()


@pytest.fixture
def settings():
    """Live settings object; tests monkeypatch attributes on it."""
    return get_settings()


@pytest.fixture
def app():
    """FastAPI app with every app.state service unset; tests fill what they need."""
    from src.dealflow.main import create_app

    application = create_app()
    for name in STATE_SERVICES:
        setattr(application.state, name, None)
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
