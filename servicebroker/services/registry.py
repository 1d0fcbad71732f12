from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from servicebroker.core.errors import (
    CatalogValidationError,
    PlanNotFoundError,
    ServiceNotFoundError,
)
from servicebroker.domain.catalog import CatalogDocument, ServiceDefinition, ServicePlan
from servicebroker.providers.base import ServiceProvider
from servicebroker.providers.factory import ProviderFactory, build_provider


logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "domain" / "example_catalog.json"


class ServiceRegistry:
    """Map service ids to their definition and the provider that backs them."""

    def __init__(self, entries: Iterable[tuple[ServiceDefinition, ServiceProvider]] = ()) -> None:
        self._definitions: dict[str, ServiceDefinition] = {}
        self._providers: dict[str, ServiceProvider] = {}
        for definition, provider in entries:
            self.register(definition, provider)

    def register(self, definition: ServiceDefinition, provider: ServiceProvider) -> None:
        # Definitions built with model_construct skip pydantic validation; check ids here too.
        if not definition.id:
            raise CatalogValidationError(f"service {definition.name!r} is missing an id")
        for plan in definition.plans:
            if not plan.id:
                raise CatalogValidationError(f"plan {plan.name!r} of service {definition.id!r} is missing an id")
        if definition.id in self._definitions:
            raise CatalogValidationError(f"duplicate service id {definition.id!r}")
        self._definitions[definition.id] = definition
        self._providers[definition.id] = provider

    def get_definition(self, service_id: str | None) -> ServiceDefinition:
        definition = self._definitions.get(service_id or "")
        if definition is None:
            raise ServiceNotFoundError(f"unknown service ID: {service_id!r}")
        return definition

    def resolve_plan(self, service_id: str | None, plan_id: str | None) -> ServicePlan:
        definition = self.get_definition(service_id)
        plan = definition.get_plan(plan_id or "")
        if plan is None:
            raise PlanNotFoundError(f"plan ID {plan_id!r} could not be found for service {service_id!r}")
        return plan

    def provider_for(self, service_id: str | None) -> ServiceProvider:
        self.get_definition(service_id)
        return self._providers[service_id or ""]

    def definitions(self) -> list[ServiceDefinition]:
        return sorted(self._definitions.values(), key=lambda item: item.name)

    def catalog(self) -> list[dict[str, Any]]:
        return [definition.to_catalog_entry() for definition in self.definitions()]


def load_catalog(path: str | Path | None = None) -> CatalogDocument:
    catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH
    try:
        raw = json.loads(catalog_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CatalogValidationError(f"could not read catalog {catalog_path}: {exc}") from exc
    try:
        return CatalogDocument.model_validate(raw)
    except ValidationError as exc:
        raise CatalogValidationError(f"invalid catalog {catalog_path}: {exc}") from exc


def build_registry(
    catalog: CatalogDocument,
    provider_factories: dict[str, ProviderFactory] | None = None,
) -> ServiceRegistry:
    registry = ServiceRegistry()
    for definition in catalog.services:
        registry.register(definition, build_provider(definition, provider_factories))
    logger.info("catalog_loaded services=%s", len(catalog.services))
    return registry
