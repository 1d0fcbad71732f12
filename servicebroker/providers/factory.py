from __future__ import annotations

from typing import Callable

from servicebroker.core.errors import CatalogValidationError
from servicebroker.domain.catalog import ServiceDefinition
from servicebroker.providers.base import ServiceProvider
from servicebroker.providers.fake import FakeAsyncServiceProvider, FakeServiceProvider
from servicebroker.services.accounts.local import InMemoryIamClient, InMemorySqlAdminClient
from servicebroker.services.accounts.service_account import ServiceAccountManager
from servicebroker.services.accounts.sql_account import SqlAccountManager


ProviderFactory = Callable[[ServiceDefinition], ServiceProvider]


def _fake(_definition: ServiceDefinition) -> ServiceProvider:
    return FakeServiceProvider()


def _fake_async(_definition: ServiceDefinition) -> ServiceProvider:
    return FakeAsyncServiceProvider()


def _fake_service_account(_definition: ServiceDefinition) -> ServiceProvider:
    # Bindings mint service accounts against the in-memory identity backend.
    return FakeServiceProvider(ServiceAccountManager(InMemoryIamClient()))


def _fake_sql(definition: ServiceDefinition) -> ServiceProvider:
    scheme = definition.metadata.get("uri_scheme") if definition.metadata else None
    return FakeAsyncServiceProvider(SqlAccountManager(InMemorySqlAdminClient(), uri_scheme=scheme))


def get_provider_factories() -> dict[str, ProviderFactory]:
    return {
        "fake": _fake,
        "fake-async": _fake_async,
        "fake-service-account": _fake_service_account,
        "fake-sql": _fake_sql,
    }


def build_provider(
    definition: ServiceDefinition, factories: dict[str, ProviderFactory] | None = None
) -> ServiceProvider:
    table = factories if factories is not None else get_provider_factories()
    name = (definition.provider or "").lower()
    factory = table.get(name)
    if factory is None:
        raise CatalogValidationError(f"Unsupported provider {definition.provider!r} for service {definition.id!r}")
    return factory(definition)
