from __future__ import annotations

import hashlib
import itertools
from dataclasses import dataclass, field

from servicebroker.core.errors import ProviderError
from servicebroker.services.accounts.iam import IamPolicy, PolicyBinding


class BackendConflictError(ProviderError):
    """The backend rejected a write because the resource changed underneath it."""

    status_code = 409


class BackendNotFoundError(ProviderError):
    status_code = 404


@dataclass
class InMemoryIamClient:
    """Deterministic identity backend used for local runs and tests.

    ``conflicts_before_success`` makes the next N policy writes fail with a 409 so the
    conflict retry path can be exercised.
    """

    conflicts_before_success: int = 0
    accounts: dict[str, dict[str, str]] = field(default_factory=dict)
    policies: dict[str, IamPolicy] = field(default_factory=dict)
    set_policy_calls: int = 0
    _counter: itertools.count = field(default_factory=lambda: itertools.count(1), repr=False)

    async def create_service_account(self, project_id: str, account_id: str, display_name: str) -> dict[str, str]:
        email = f"{account_id}@{project_id}.iam.example.com"
        if any(account["email"] == email for account in self.accounts.values()):
            raise BackendConflictError(f"service account {email} already exists")
        unique_id = str(100000 + next(self._counter))
        account = {
            "name": f"projects/{project_id}/serviceAccounts/{email}",
            "email": email,
            "unique_id": unique_id,
            "display_name": display_name,
        }
        self.accounts[unique_id] = account
        return dict(account)

    async def create_service_account_key(self, account_name: str) -> dict[str, str]:
        digest = hashlib.sha256(account_name.encode("utf-8")).hexdigest()
        return {"private_key_data": digest}

    async def delete_service_account(self, resource_name: str) -> None:
        unique_id = resource_name.rsplit("/", 1)[-1]
        if self.accounts.pop(unique_id, None) is None:
            raise BackendNotFoundError(f"service account {resource_name} not found")

    async def get_iam_policy(self, project_id: str) -> IamPolicy:
        policy = self.policies.get(project_id) or IamPolicy(etag="0")
        return IamPolicy(
            bindings=[PolicyBinding(role=b.role, members=list(b.members)) for b in policy.bindings],
            etag=policy.etag,
        )

    async def set_iam_policy(self, project_id: str, policy: IamPolicy) -> IamPolicy:
        self.set_policy_calls += 1
        current = self.policies.get(project_id) or IamPolicy(etag="0")
        if self.conflicts_before_success > 0:
            self.conflicts_before_success -= 1
            raise BackendConflictError("policy was modified concurrently")
        if policy.etag != current.etag:
            raise BackendConflictError("policy etag is stale")
        stored = IamPolicy(bindings=list(policy.bindings), etag=str(int(current.etag or "0") + 1))
        self.policies[project_id] = stored
        return stored


@dataclass
class InMemorySqlAdminClient:
    users: dict[tuple[str, str], str] = field(default_factory=dict)
    certs: dict[tuple[str, str], str] = field(default_factory=dict)

    async def create_user(self, project_id: str, instance_name: str, username: str, password: str) -> None:
        key = (instance_name, username)
        if key in self.users:
            raise BackendConflictError(f"user {username} already exists on {instance_name}")
        self.users[key] = password

    async def delete_user(self, project_id: str, instance_name: str, username: str) -> None:
        if self.users.pop((instance_name, username), None) is None:
            raise BackendNotFoundError(f"user {username} not found on {instance_name}")

    async def create_ssl_cert(self, project_id: str, instance_name: str, common_name: str) -> dict[str, str]:
        fingerprint = hashlib.sha1(f"{instance_name}/{common_name}".encode("utf-8")).hexdigest()
        self.certs[(instance_name, fingerprint)] = common_name
        return {
            "sha1_fingerprint": fingerprint,
            "ca_cert": f"ca-cert-{instance_name}",
            "client_cert": f"client-cert-{common_name}",
            "client_key": f"client-key-{common_name}",
        }

    async def delete_ssl_cert(self, project_id: str, instance_name: str, sha1_fingerprint: str) -> None:
        if self.certs.pop((instance_name, sha1_fingerprint), None) is None:
            raise BackendNotFoundError(f"certificate {sha1_fingerprint} not found on {instance_name}")
