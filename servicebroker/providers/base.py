from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from servicebroker.domain.catalog import ServicePlan
from servicebroker.domain.contracts import BindDetails, DeprovisionDetails, ProvisionDetails
from servicebroker.domain.models import ServiceBindingCredentials, ServiceInstanceDetails


@dataclass
class InstanceMetadata:
    # Backend facts copied onto the instance record after a successful provision.
    name: str | None = None
    location: str | None = None
    url: str | None = None
    other_details: dict[str, Any] = field(default_factory=dict)


class ServiceProvider(Protocol):
    def provisions_async(self) -> bool:
        ...

    def deprovisions_async(self) -> bool:
        ...

    async def provision(self, instance_id: str, details: ProvisionDetails, plan: ServicePlan) -> InstanceMetadata:
        ...

    async def deprovision(
        self, instance_id: str, details: DeprovisionDetails, *, instance: ServiceInstanceDetails
    ) -> None:
        ...

    async def bind(
        self, instance_id: str, binding_id: str, details: BindDetails, *, instance: ServiceInstanceDetails
    ) -> dict[str, Any]:
        ...

    async def unbind(self, binding: ServiceBindingCredentials) -> None:
        ...

    async def poll_instance(self, instance_id: str) -> bool:
        ...

    async def last_operation_was_delete(self, instance_id: str) -> bool:
        ...

    def build_instance_credentials(
        self, binding_blob: Mapping[str, Any], instance_blob: Mapping[str, Any]
    ) -> dict[str, Any]:
        ...
