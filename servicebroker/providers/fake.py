from __future__ import annotations

import secrets
from typing import Any, Mapping

from servicebroker.core.errors import ProviderError
from servicebroker.domain.catalog import ServicePlan
from servicebroker.domain.contracts import BindDetails, DeprovisionDetails, ProvisionDetails
from servicebroker.domain.models import ServiceBindingCredentials, ServiceInstanceDetails
from servicebroker.providers.base import InstanceMetadata
from servicebroker.services.accounts.base import CredentialManager, merge_credential_maps


class FakeServiceProvider:
    """In-memory backend that completes every operation synchronously.

    Set ``provision_error`` / ``deprovision_error`` / ``bind_error`` to make the next
    matching call raise, which drives the broker's failure paths in tests.
    """

    def __init__(self, credential_manager: CredentialManager | None = None, *, location: str = "local") -> None:
        self._credentials = credential_manager
        self._location = location
        self.resources: dict[str, dict[str, Any]] = {}
        self.bindings: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.provision_error: Exception | None = None
        self.deprovision_error: Exception | None = None
        self.bind_error: Exception | None = None

    def provisions_async(self) -> bool:
        return False

    def deprovisions_async(self) -> bool:
        return False

    @staticmethod
    def resource_name(instance_id: str) -> str:
        # Derived from the instance id so later calls can find the resource again.
        return f"fake-{instance_id}"

    async def provision(self, instance_id: str, details: ProvisionDetails, plan: ServicePlan) -> InstanceMetadata:
        self.calls.append(("provision", instance_id))
        if self.provision_error is not None:
            error, self.provision_error = self.provision_error, None
            raise error
        name = self.resource_name(instance_id)
        if name in self.resources:
            raise ProviderError(f"resource {name} already exists")
        properties = {**plan.service_properties, **details.parameters_dict()}
        self.resources[name] = {"plan_id": plan.id, "properties": properties}
        return InstanceMetadata(
            name=name,
            location=self._location,
            url=f"https://{self._location}.example.com/{name}",
            other_details={"instance_name": name, "host": f"{name}.{self._location}.example.com"},
        )

    async def deprovision(
        self, instance_id: str, details: DeprovisionDetails, *, instance: ServiceInstanceDetails
    ) -> None:
        self.calls.append(("deprovision", instance_id))
        if self.deprovision_error is not None:
            error, self.deprovision_error = self.deprovision_error, None
            raise error
        self.resources.pop(instance.name or self.resource_name(instance_id), None)

    async def bind(
        self, instance_id: str, binding_id: str, details: BindDetails, *, instance: ServiceInstanceDetails
    ) -> dict[str, Any]:
        self.calls.append(("bind", binding_id))
        if self.bind_error is not None:
            error, self.bind_error = self.bind_error, None
            raise error
        if self._credentials is not None:
            blob = await self._credentials.create_credentials(instance_id, binding_id, details, instance)
        else:
            blob = {"username": f"user-{binding_id}", "password": secrets.token_urlsafe(16)}
        self.bindings[(instance_id, binding_id)] = blob
        return blob

    async def unbind(self, binding: ServiceBindingCredentials) -> None:
        self.calls.append(("unbind", binding.binding_id))
        if self._credentials is not None:
            await self._credentials.delete_credentials(binding)
        self.bindings.pop((binding.service_instance_id, binding.binding_id), None)

    async def poll_instance(self, instance_id: str) -> bool:
        return True

    async def last_operation_was_delete(self, instance_id: str) -> bool:
        return False

    def build_instance_credentials(
        self, binding_blob: Mapping[str, Any], instance_blob: Mapping[str, Any]
    ) -> dict[str, Any]:
        if self._credentials is not None:
            return self._credentials.build_instance_credentials(binding_blob, instance_blob)
        return merge_credential_maps(binding_blob, instance_blob)


class FakeAsyncServiceProvider(FakeServiceProvider):
    """Fake backend whose create and delete finish only after polling.

    Each poll consumes the next scripted outcome for the instance: ``True`` (done),
    ``False`` (still running) or an exception to raise. Without a script, an operation
    finishes on poll number ``polls_until_done``.
    """

    def __init__(
        self,
        credential_manager: CredentialManager | None = None,
        *,
        polls_until_done: int = 1,
        async_provision: bool = True,
        async_deprovision: bool = True,
        location: str = "local",
    ) -> None:
        super().__init__(credential_manager, location=location)
        self._polls_until_done = max(1, polls_until_done)
        self._async_provision = async_provision
        self._async_deprovision = async_deprovision
        self._scripts: dict[str, list[bool | Exception]] = {}
        self._poll_counts: dict[str, int] = {}
        self.last_operation: dict[str, str] = {}
        self.last_operation_error: Exception | None = None

    def provisions_async(self) -> bool:
        return self._async_provision

    def deprovisions_async(self) -> bool:
        return self._async_deprovision

    def script_polls(self, instance_id: str, *outcomes: bool | Exception) -> None:
        self._scripts.setdefault(instance_id, []).extend(outcomes)

    async def provision(self, instance_id: str, details: ProvisionDetails, plan: ServicePlan) -> InstanceMetadata:
        metadata = await super().provision(instance_id, details, plan)
        self.last_operation[instance_id] = "create"
        self._poll_counts[instance_id] = 0
        return metadata

    async def deprovision(
        self, instance_id: str, details: DeprovisionDetails, *, instance: ServiceInstanceDetails
    ) -> None:
        self.calls.append(("deprovision", instance_id))
        if self.deprovision_error is not None:
            error, self.deprovision_error = self.deprovision_error, None
            raise error
        # The resource disappears once a poll reports the delete finished.
        self.last_operation[instance_id] = "delete"
        self._poll_counts[instance_id] = 0

    async def poll_instance(self, instance_id: str) -> bool:
        self.calls.append(("poll", instance_id))
        script = self._scripts.get(instance_id)
        if script:
            outcome = script.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            done = bool(outcome)
        else:
            self._poll_counts[instance_id] = self._poll_counts.get(instance_id, 0) + 1
            done = self._poll_counts[instance_id] >= self._polls_until_done
        if done and self.last_operation.get(instance_id) == "delete":
            self.resources.pop(self.resource_name(instance_id), None)
        return done

    async def last_operation_was_delete(self, instance_id: str) -> bool:
        if self.last_operation_error is not None:
            error, self.last_operation_error = self.last_operation_error, None
            raise error
        return self.last_operation.get(instance_id) == "delete"
