from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ServicePlan(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    display_name: str | None = None
    free: bool = True
    # Plan-specific settings passed to the provider, e.g. a storage class.
    service_properties: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None

    def to_catalog_entry(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "free": self.free,
        }
        metadata = dict(self.metadata or {})
        if self.display_name:
            metadata.setdefault("displayName", self.display_name)
        if metadata:
            entry["metadata"] = metadata
        return entry


class ServiceDefinition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    bindable: bool = True
    plan_updateable: bool = False
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    # Reject binds that do not name the application they are for.
    requires_app_guid: bool = False
    # Name resolved through the provider factory table.
    provider: str = "fake"
    plans: list[ServicePlan] = Field(default_factory=list)

    def get_plan(self, plan_id: str) -> ServicePlan | None:
        for plan in self.plans:
            if plan.id == plan_id:
                return plan
        return None

    def to_catalog_entry(self) -> dict[str, Any]:
        # Shape matches the OSB catalog response; internal fields stay private.
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "bindable": self.bindable,
            "plan_updateable": self.plan_updateable,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
            "plans": [plan.to_catalog_entry() for plan in self.plans],
        }


class LegacyUpgradePath(BaseModel):
    model_config = ConfigDict(extra="ignore")

    service_id: str = Field(min_length=1)
    # Legacy ids were generated per installation; when absent, look them up by name.
    legacy_plan_id: str | None = None
    legacy_plan_name: str = Field(min_length=1)
    new_plan_id: str = Field(min_length=1)
    new_plan_name: str = Field(min_length=1)

    def to_catalog_entry(self) -> dict[str, Any]:
        return {
            "id": self.legacy_plan_id,
            "name": f"legacy3-{self.legacy_plan_name}",
            "description": f'Legacy plan, must be upgraded to "{self.new_plan_name}"',
            "free": True,
            "metadata": {"legacy": True, "upgrade_to": self.new_plan_id},
        }


class CatalogDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    services: list[ServiceDefinition] = Field(default_factory=list)
    legacy_upgrades: list[LegacyUpgradePath] = Field(default_factory=list)
