from __future__ import annotations

# Re-export credential managers for centralized imports.

from servicebroker.services.accounts.base import CredentialManager, merge_credential_maps
from servicebroker.services.accounts.iam import IamPolicy, PolicyBinding, merge_bindings, roles_to_members
from servicebroker.services.accounts.local import InMemoryIamClient, InMemorySqlAdminClient
from servicebroker.services.accounts.service_account import ServiceAccountManager
from servicebroker.services.accounts.sql_account import SqlAccountManager

__all__ = [
    "CredentialManager",
    "merge_credential_maps",
    "IamPolicy",
    "PolicyBinding",
    "merge_bindings",
    "roles_to_members",
    "InMemoryIamClient",
    "InMemorySqlAdminClient",
    "ServiceAccountManager",
    "SqlAccountManager",
]
