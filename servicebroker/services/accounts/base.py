from __future__ import annotations

from typing import Any, Mapping, Protocol

from servicebroker.domain.contracts import BindDetails
from servicebroker.domain.models import ServiceBindingCredentials, ServiceInstanceDetails
from servicebroker.services.accounts.iam import IamPolicy


def merge_credential_maps(binding: Mapping[str, Any] | None, instance: Mapping[str, Any] | None) -> dict[str, Any]:
    # Instance keys win on collision.
    merged = dict(binding or {})
    merged.update(instance or {})
    return merged


class CredentialManager(Protocol):
    async def create_credentials(
        self,
        instance_id: str,
        binding_id: str,
        details: BindDetails,
        instance: ServiceInstanceDetails,
    ) -> dict[str, Any]:
        ...

    async def delete_credentials(self, binding: ServiceBindingCredentials) -> None:
        ...

    def build_instance_credentials(
        self, binding_blob: Mapping[str, Any], instance_blob: Mapping[str, Any]
    ) -> dict[str, Any]:
        ...


class IamClient(Protocol):
    async def create_service_account(self, project_id: str, account_id: str, display_name: str) -> dict[str, str]:
        ...

    async def create_service_account_key(self, account_name: str) -> dict[str, str]:
        ...

    async def delete_service_account(self, resource_name: str) -> None:
        ...

    async def get_iam_policy(self, project_id: str) -> IamPolicy:
        ...

    async def set_iam_policy(self, project_id: str, policy: IamPolicy) -> IamPolicy:
        ...


class SqlAdminClient(Protocol):
    async def create_user(self, project_id: str, instance_name: str, username: str, password: str) -> None:
        ...

    async def delete_user(self, project_id: str, instance_name: str, username: str) -> None:
        ...

    async def create_ssl_cert(self, project_id: str, instance_name: str, common_name: str) -> dict[str, str]:
        ...

    async def delete_ssl_cert(self, project_id: str, instance_name: str, sha1_fingerprint: str) -> None:
        ...
