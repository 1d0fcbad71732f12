from __future__ import annotations

import base64
import logging
import secrets
from typing import Any, Mapping
from urllib.parse import quote_plus

from servicebroker.core.config import get_settings
from servicebroker.core.errors import CredentialError
from servicebroker.domain.contracts import BindDetails
from servicebroker.domain.models import ServiceBindingCredentials, ServiceInstanceDetails
from servicebroker.services.accounts.base import SqlAdminClient, merge_credential_maps


logger = logging.getLogger(__name__)


def generate_username(instance_id: str, binding_id: str, max_length: int | None = None) -> str:
    if not instance_id and not binding_id:
        raise CredentialError("cannot derive a database username from an empty instance id and binding id")
    limit = max_length if max_length is not None else get_settings().sql_username_max_length
    return (binding_id + instance_id)[:limit]


def generate_password(num_bytes: int | None = None) -> str:
    # URL-safe base64 of random bytes, padding kept.
    size = num_bytes if num_bytes is not None else get_settings().sql_password_bytes
    return base64.urlsafe_b64encode(secrets.token_bytes(size)).decode("ascii")


def _cert_common_name(binding_id: str) -> str:
    return binding_id[:10] + "cert"


class SqlAccountManager:
    """Create a database user and client certificate for each binding.

    ``uri_scheme`` selects the connection string added by ``build_instance_credentials``
    ("mysql" or "postgres"); when unset only the merged credential map is returned.
    """

    def __init__(
        self,
        sql_client: SqlAdminClient,
        *,
        project_id: str | None = None,
        uri_scheme: str | None = None,
    ) -> None:
        self._sql = sql_client
        self._project_id = project_id or get_settings().project_id
        self._uri_scheme = uri_scheme

    async def create_credentials(
        self,
        instance_id: str,
        binding_id: str,
        details: BindDetails,
        instance: ServiceInstanceDetails,
    ) -> dict[str, Any]:
        params = details.parameters_dict()
        username = params.get("username")
        if not isinstance(username, str) or not username:
            username = generate_username(instance_id, binding_id)
        password = params.get("password")
        if not isinstance(password, str) or not password:
            password = generate_password()

        instance_name = instance.name or instance_id
        await self._sql.create_user(self._project_id, instance_name, username, password)
        cert = await self._sql.create_ssl_cert(self._project_id, instance_name, _cert_common_name(binding_id))
        logger.info("sql_user_created binding_id=%s instance=%s username=%s", binding_id, instance_name, username)
        return {
            "Username": username,
            "Password": password,
            "Sha1Fingerprint": cert["sha1_fingerprint"],
            "CaCert": cert["ca_cert"],
            "ClientCert": cert["client_cert"],
            "ClientKey": cert["client_key"],
            "InstanceName": instance_name,
        }

    async def delete_credentials(self, binding: ServiceBindingCredentials) -> None:
        details = binding.get_other_details()
        username = details.get("Username")
        if not username:
            raise CredentialError(f"binding {binding.binding_id!r} has no database user to delete")
        instance_name = details.get("InstanceName") or binding.service_instance_id
        # Certificates are only present when the bind minted them.
        if details.get("CaCert"):
            await self._sql.delete_ssl_cert(self._project_id, instance_name, details.get("Sha1Fingerprint", ""))
        await self._sql.delete_user(self._project_id, instance_name, username)
        logger.info("sql_user_deleted binding_id=%s instance=%s", binding.binding_id, instance_name)

    def build_instance_credentials(
        self, binding_blob: Mapping[str, Any], instance_blob: Mapping[str, Any]
    ) -> dict[str, Any]:
        combined = merge_credential_maps(binding_blob, instance_blob)
        if self._uri_scheme is None:
            return combined
        prefix = combined.get("UriPrefix", "")
        user = quote_plus(str(combined.get("Username", "")), safe="")
        password = quote_plus(str(combined.get("Password", "")), safe="")
        host = combined.get("host", "")
        database = combined.get("database_name", "")
        if self._uri_scheme == "mysql":
            combined["uri"] = f"{prefix}mysql://{user}:{password}@{host}/{database}?ssl_mode=required"
        elif self._uri_scheme == "postgres":
            combined["uri"] = (
                f"{prefix}postgres://{user}:{password}@{host}/{database}?sslmode=require"
                f"&sslcert={quote_plus(str(combined.get('ClientCert', '')), safe='')}"
                f"&sslkey={quote_plus(str(combined.get('ClientKey', '')), safe='')}"
                f"&sslrootcert={quote_plus(str(combined.get('CaCert', '')), safe='')}"
            )
        else:
            raise CredentialError(f"unsupported uri scheme {self._uri_scheme!r}")
        return combined
