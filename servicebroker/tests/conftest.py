from __future__ import annotations

import pytest

from servicebroker.core.config import get_settings
from servicebroker.persistence.db import build_engine, build_session_factory
from servicebroker.persistence.migrations import run_migrations
from servicebroker.providers.fake import FakeAsyncServiceProvider, FakeServiceProvider
from servicebroker.services.broker import ServiceBroker
from servicebroker.services.registry import ServiceRegistry
from servicebroker.tests.utils.broker import app_only_definition, async_definition, sync_definition


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def clear_settings_cache():
    # Tests that monkeypatch the environment must not leak cached settings.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def engine():
    # Fresh in-memory database per test, built by the real migration runner.
    engine = build_engine(TEST_DATABASE_URL)
    await run_migrations(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def bare_engine():
    engine = build_engine(TEST_DATABASE_URL)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def sync_provider() -> FakeServiceProvider:
    return FakeServiceProvider()


@pytest.fixture
def async_provider() -> FakeAsyncServiceProvider:
    return FakeAsyncServiceProvider()


@pytest.fixture
def app_provider() -> FakeServiceProvider:
    return FakeServiceProvider()


@pytest.fixture
def registry(sync_provider, async_provider, app_provider) -> ServiceRegistry:
    return ServiceRegistry(
        [
            (sync_definition(), sync_provider),
            (async_definition(), async_provider),
            (app_only_definition(), app_provider),
        ]
    )


@pytest.fixture
def broker(registry, session_factory) -> ServiceBroker:
    return ServiceBroker(registry, session_factory, instance_limit=None)
