from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from servicebroker.core.config import Settings, get_settings
from servicebroker.domain.catalog import CatalogDocument
from servicebroker.domain.contracts import BrokerContract
from servicebroker.providers.factory import ProviderFactory
from servicebroker.services.broker import ServiceBroker
from servicebroker.services.compatibility import LegacyPlanUpgrader
from servicebroker.services.registry import build_registry, load_catalog


logger = logging.getLogger(__name__)


async def build_broker(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: Settings | None = None,
    catalog: CatalogDocument | None = None,
    provider_factories: dict[str, ProviderFactory] | None = None,
) -> BrokerContract:
    """Assemble the broker stack from the catalog: registry, orchestrator and, optionally, the legacy shim."""
    settings = settings or get_settings()
    document = catalog or load_catalog(settings.catalog_path)
    registry = build_registry(document, provider_factories)
    broker: BrokerContract = ServiceBroker(registry, session_factory, instance_limit=settings.instance_limit)
    if settings.compatibility_enabled and document.legacy_upgrades:
        broker = await LegacyPlanUpgrader.discover(broker, session_factory, document.legacy_upgrades)
    logger.info(
        "broker_ready services=%s compatibility=%s",
        len(document.services),
        isinstance(broker, LegacyPlanUpgrader),
    )
    return broker
