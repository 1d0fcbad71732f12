from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from servicebroker.core.errors import RawParametersInvalidError
from servicebroker.domain.lifecycle import OperationState


class _Details(BaseModel):
    # Accept both the wire alias and the attribute name; ignore unknown OSB fields.
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    service_id: str | None = None
    plan_id: str | None = None


class _ParameterizedDetails(_Details):
    raw_parameters: Any = Field(default=None, alias="parameters")

    def parameters_dict(self) -> dict[str, Any]:
        # Parameters must be a JSON object when present.
        if self.raw_parameters is None:
            return {}
        if not isinstance(self.raw_parameters, dict):
            raise RawParametersInvalidError()
        return dict(self.raw_parameters)


class ProvisionDetails(_ParameterizedDetails):
    organization_guid: str | None = None
    space_guid: str | None = None
    context: dict[str, Any] | None = None


class DeprovisionDetails(_Details):
    pass


class BindDetails(_ParameterizedDetails):
    app_guid: str | None = None
    bind_resource: dict[str, Any] | None = None

    def resolved_app_guid(self) -> str | None:
        # Newer platforms nest the app GUID inside bind_resource.
        if self.app_guid:
            return self.app_guid
        if self.bind_resource:
            value = self.bind_resource.get("app_guid")
            if isinstance(value, str) and value:
                return value
        return None


class UnbindDetails(_Details):
    pass


class UpdateDetails(_ParameterizedDetails):
    previous_values: dict[str, Any] | None = None


@dataclass(frozen=True)
class ProvisionedServiceSpec:
    is_async: bool
    dashboard_url: str = ""


@dataclass(frozen=True)
class DeprovisionServiceSpec:
    is_async: bool


@dataclass(frozen=True)
class UpdateServiceSpec:
    is_async: bool


@dataclass(frozen=True)
class Binding:
    credentials: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LastOperation:
    state: OperationState
    description: str = ""


class BrokerContract(Protocol):
    async def services(self) -> list[dict[str, Any]]:
        ...

    async def provision(
        self, instance_id: str, details: ProvisionDetails, async_allowed: bool
    ) -> ProvisionedServiceSpec:
        ...

    async def deprovision(
        self, instance_id: str, details: DeprovisionDetails, async_allowed: bool
    ) -> DeprovisionServiceSpec:
        ...

    async def bind(self, instance_id: str, binding_id: str, details: BindDetails) -> Binding:
        ...

    async def unbind(self, instance_id: str, binding_id: str, details: UnbindDetails) -> None:
        ...

    async def last_operation(self, instance_id: str, operation_data: str | None = None) -> LastOperation:
        ...

    async def update(
        self, instance_id: str, details: UpdateDetails, async_allowed: bool
    ) -> UpdateServiceSpec:
        ...
