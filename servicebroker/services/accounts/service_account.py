from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from servicebroker.core.config import get_settings
from servicebroker.core.errors import CredentialError
from servicebroker.domain.contracts import BindDetails
from servicebroker.domain.models import ServiceBindingCredentials, ServiceInstanceDetails
from servicebroker.services.accounts.base import IamClient, merge_credential_maps
from servicebroker.services.accounts.iam import (
    ROLE_RESOURCE_PREFIX,
    SERVICE_ACCOUNT_MEMBER_PREFIX,
    IamPolicy,
    PolicyBinding,
    merge_bindings,
)
from servicebroker.services.resilience import RetryPolicy, is_conflict, retry_async


logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAME_MAX_LENGTH = 20


def service_account_name(binding_id: str, prefix: str | None = None) -> str:
    name = (prefix if prefix is not None else get_settings().service_account_prefix) + binding_id
    return name[:SERVICE_ACCOUNT_NAME_MAX_LENGTH]


def extract_role(details: BindDetails) -> str:
    role = details.parameters_dict().get("role")
    if not isinstance(role, str) or not role:
        raise CredentialError("bind parameters must include a role as a string")
    return role


def parse_allowlist(raw: str | Iterable[str] | None) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [item.strip() for item in raw.split(",") if item.strip()]
    return [item for item in raw if item]


class ServiceAccountManager:
    """Mint a backend service account per binding and grant it one project role."""

    def __init__(
        self,
        iam_client: IamClient,
        *,
        project_id: str | None = None,
        prefix: str | None = None,
        role_allowlist: str | Iterable[str] | None = None,
        conflict_policy: RetryPolicy | None = None,
    ) -> None:
        settings = get_settings()
        self._iam = iam_client
        self._project_id = project_id or settings.project_id
        self._prefix = prefix if prefix is not None else settings.service_account_prefix
        self._allowlist = parse_allowlist(
            role_allowlist if role_allowlist is not None else settings.service_account_role_allowlist
        )
        self._conflict_policy = conflict_policy or RetryPolicy(
            timeout_ms=settings.provider_call_timeout_ms,
            max_attempts=settings.iam_conflict_max_attempts,
            backoff_ms=settings.iam_conflict_backoff_ms,
        )

    @property
    def project_id(self) -> str:
        return self._project_id

    async def create_credentials(
        self,
        instance_id: str,
        binding_id: str,
        details: BindDetails,
        instance: ServiceInstanceDetails,
    ) -> dict[str, Any]:
        role = extract_role(details)
        if self._allowlist and role not in self._allowlist:
            raise CredentialError(
                f"The role {role} is not allowed for this service. You must use one of {self._allowlist}."
            )
        return await self.create_account_with_roles(binding_id, [role])

    async def create_account_with_roles(self, binding_id: str, roles: list[str]) -> dict[str, Any]:
        name = service_account_name(binding_id, self._prefix)
        account = await self._iam.create_service_account(self._project_id, name, name)
        for role in roles:
            await self._grant_role(role, account["email"])
        key = await self._iam.create_service_account_key(account["name"])
        logger.info(
            "service_account_created binding_id=%s account=%s roles=%s",
            binding_id,
            account["email"],
            ",".join(roles),
        )
        return {
            "Name": account.get("display_name", name),
            "Email": account["email"],
            "UniqueId": account["unique_id"],
            "PrivateKeyData": key["private_key_data"],
            "ProjectId": self._project_id,
        }

    async def _grant_role(self, role: str, email: str) -> None:
        async def _read_modify_write() -> None:
            current = await self._iam.get_iam_policy(self._project_id)
            grant = PolicyBinding(
                role=ROLE_RESOURCE_PREFIX + role,
                members=[SERVICE_ACCOUNT_MEMBER_PREFIX + email],
            )
            updated = IamPolicy(bindings=merge_bindings([*current.bindings, grant]), etag=current.etag)
            await self._iam.set_iam_policy(self._project_id, updated)

        # Concurrent policy writers surface as 409; anything else fails the bind immediately.
        await retry_async(_read_modify_write, policy=self._conflict_policy, retryable=is_conflict)

    async def delete_credentials(self, binding: ServiceBindingCredentials) -> None:
        details = binding.get_other_details()
        unique_id = details.get("UniqueId")
        if not unique_id:
            raise CredentialError(f"binding {binding.binding_id!r} has no service account to delete")
        await self._iam.delete_service_account(f"projects/{self._project_id}/serviceAccounts/{unique_id}")
        logger.info("service_account_deleted binding_id=%s unique_id=%s", binding.binding_id, unique_id)

    def build_instance_credentials(
        self, binding_blob: Mapping[str, Any], instance_blob: Mapping[str, Any]
    ) -> dict[str, Any]:
        return merge_credential_maps(binding_blob, instance_blob)
