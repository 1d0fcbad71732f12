from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from servicebroker.core.config import get_settings
from servicebroker.core.errors import (
    AppGuidRequiredError,
    AsyncRequiredError,
    BindingAlreadyExistsError,
    BindingDoesNotExistError,
    ConstraintViolationError,
    DatabaseError,
    InstanceAlreadyExistsError,
    InstanceDoesNotExistError,
    InstanceLimitExceededError,
    OrphanedResourceError,
    PlanChangeNotSupportedError,
    SynchronousPollError,
)
from servicebroker.domain.contracts import (
    BindDetails,
    Binding,
    DeprovisionDetails,
    DeprovisionServiceSpec,
    LastOperation,
    ProvisionDetails,
    ProvisionedServiceSpec,
    UnbindDetails,
    UpdateDetails,
    UpdateServiceSpec,
)
from servicebroker.domain.lifecycle import InstanceStatus, OperationState, PollResult, next_status, operation_state
from servicebroker.domain.models import ServiceBindingCredentials, ServiceInstanceDetails
from servicebroker.persistence.repos import bindings as binding_repo
from servicebroker.persistence.repos import instances as instance_repo
from servicebroker.persistence.repos.provision_requests import create_provision_request
from servicebroker.services.registry import ServiceRegistry
from servicebroker.services.resilience import is_transient


logger = logging.getLogger(__name__)

# Failures of the record store after the backend already changed.
PersistenceFailure = (SQLAlchemyError, DatabaseError)

_UNSET: Any = object()


class ServiceBroker:
    """Drive providers through the instance lifecycle and keep the record store consistent.

    Every operation opens its own session. Backend mutations are never retried and
    never compensated: when the store cannot record a change the backend already made,
    the caller gets ``OrphanedResourceError`` and an operator has to reconcile.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        instance_limit: int | None = _UNSET,
    ) -> None:
        self._registry = registry
        self._sessions = session_factory
        self._instance_limit = get_settings().instance_limit if instance_limit is _UNSET else instance_limit

    @property
    def registry(self) -> ServiceRegistry:
        return self._registry

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._sessions

    async def services(self) -> list[dict[str, Any]]:
        return self._registry.catalog()

    async def provision(
        self, instance_id: str, details: ProvisionDetails, async_allowed: bool
    ) -> ProvisionedServiceSpec:
        logger.info(
            "broker_provision instance_id=%s service_id=%s plan_id=%s async_allowed=%s",
            instance_id,
            details.service_id,
            details.plan_id,
            async_allowed,
        )
        async with self._sessions() as session:
            if self._instance_limit is not None:
                if await instance_repo.count_instances(session) >= self._instance_limit:
                    raise InstanceLimitExceededError()
            if await instance_repo.count_instance_by_id(session, instance_id) > 0:
                raise InstanceAlreadyExistsError()

            plan = self._registry.resolve_plan(details.service_id, details.plan_id)
            parameters = details.parameters_dict()
            provider = self._registry.provider_for(details.service_id)
            is_async = provider.provisions_async()
            if is_async and not async_allowed:
                raise AsyncRequiredError()

            # The row is the claim: only one request can insert it, so only one reaches the backend.
            record = ServiceInstanceDetails(
                id=instance_id,
                service_id=details.service_id,
                plan_id=details.plan_id,
                organization_guid=details.organization_guid,
                space_guid=details.space_guid,
                status=InstanceStatus.PROVISIONING.value,
            )
            try:
                await instance_repo.create_instance(session, record)
                await session.commit()
            except ConstraintViolationError as exc:
                raise InstanceAlreadyExistsError() from exc

            try:
                metadata = await provider.provision(instance_id, details, plan)
            except Exception:  # noqa: BLE001 - any provider failure frees the id, then propagates
                await self._release_claim(instance_id)
                raise

            try:
                record.name = metadata.name
                record.location = metadata.location
                record.url = metadata.url
                record.other_details = dict(metadata.other_details)
                if not is_async:
                    record.status = InstanceStatus.ACTIVE.value
                await instance_repo.save_instance(session, record)
                await create_provision_request(session, instance_id=instance_id, request_details=parameters)
                await session.commit()
            except PersistenceFailure as exc:
                logger.exception("broker_provision_orphaned instance_id=%s", instance_id)
                raise OrphanedResourceError(
                    f"Error saving instance details to database: {exc}. WARNING: the instance record is "
                    "incomplete and does not reflect the backend resource. Contact your operator for cleanup"
                ) from exc

        return ProvisionedServiceSpec(is_async=is_async)

    async def _release_claim(self, instance_id: str) -> None:
        async with self._sessions() as session:
            try:
                await instance_repo.release_instance_claim(session, instance_id)
                await session.commit()
            except PersistenceFailure:
                # The provider error is what the caller needs; the stale claim blocks the id until cleaned up.
                logger.warning("broker_claim_release_failed instance_id=%s", instance_id, exc_info=True)

    async def deprovision(
        self, instance_id: str, details: DeprovisionDetails, async_allowed: bool
    ) -> DeprovisionServiceSpec:
        logger.info("broker_deprovision instance_id=%s async_allowed=%s", instance_id, async_allowed)
        async with self._sessions() as session:
            record = await instance_repo.get_instance(session, instance_id)
            if record is None:
                raise InstanceDoesNotExistError()
            provider = self._registry.provider_for(record.service_id)
            is_async = provider.deprovisions_async()
            if is_async and not async_allowed:
                raise AsyncRequiredError()

            await provider.deprovision(instance_id, details, instance=record)

            try:
                if is_async:
                    record.status = InstanceStatus.DEPROVISIONING.value
                    await instance_repo.save_instance(session, record)
                else:
                    await instance_repo.soft_delete_instance(session, instance_id)
                await session.commit()
            except PersistenceFailure as exc:
                logger.exception("broker_deprovision_orphaned instance_id=%s", instance_id)
                raise OrphanedResourceError(
                    f"Error deleting instance details from database: {exc}. WARNING: this instance will "
                    "remain visible in the platform. Contact your operator for cleanup"
                ) from exc

        return DeprovisionServiceSpec(is_async=is_async)

    async def bind(self, instance_id: str, binding_id: str, details: BindDetails) -> Binding:
        logger.info("broker_bind instance_id=%s binding_id=%s", instance_id, binding_id)
        async with self._sessions() as session:
            record = await instance_repo.get_instance(session, instance_id)
            if record is None:
                raise InstanceDoesNotExistError()
            if await binding_repo.count_binding(session, instance_id, binding_id) > 0:
                raise BindingAlreadyExistsError()
            definition = self._registry.get_definition(record.service_id)
            if definition.requires_app_guid and not details.resolved_app_guid():
                raise AppGuidRequiredError()

            provider = self._registry.provider_for(record.service_id)
            instance_blob = record.get_other_details()
            binding_blob = await provider.bind(instance_id, binding_id, details, instance=record)

            binding = ServiceBindingCredentials(
                service_instance_id=instance_id,
                binding_id=binding_id,
                service_id=record.service_id,
                other_details=dict(binding_blob),
            )
            try:
                await binding_repo.create_binding(session, binding)
                await session.commit()
            except ConstraintViolationError as exc:
                # Lost a race with a concurrent bind; the credentials just minted are not tracked.
                logger.warning("broker_bind_race instance_id=%s binding_id=%s", instance_id, binding_id)
                raise BindingAlreadyExistsError(
                    "binding already exists. WARNING: the credentials created by this request were not "
                    "saved and must be removed by your operator"
                ) from exc
            except PersistenceFailure as exc:
                logger.exception("broker_bind_orphaned instance_id=%s binding_id=%s", instance_id, binding_id)
                raise OrphanedResourceError(
                    f"Error saving credentials to database: {exc}. WARNING: these credentials cannot be "
                    "unbound through the platform. Contact your operator for cleanup"
                ) from exc

        return Binding(credentials=provider.build_instance_credentials(binding_blob, instance_blob))

    async def unbind(self, instance_id: str, binding_id: str, details: UnbindDetails) -> None:
        logger.info("broker_unbind instance_id=%s binding_id=%s", instance_id, binding_id)
        async with self._sessions() as session:
            record = await instance_repo.get_instance(session, instance_id)
            if record is None:
                raise InstanceDoesNotExistError()
            binding = await binding_repo.get_binding(session, instance_id, binding_id)
            if binding is None:
                raise BindingDoesNotExistError()

            provider = self._registry.provider_for(record.service_id)
            await provider.unbind(binding)

            try:
                await binding_repo.soft_delete_binding(session, instance_id, binding_id)
                await session.commit()
            except PersistenceFailure as exc:
                logger.exception("broker_unbind_orphaned instance_id=%s binding_id=%s", instance_id, binding_id)
                raise OrphanedResourceError(
                    f"Error soft-deleting credentials from database: {exc}. WARNING: these credentials will "
                    "remain visible in the platform. Contact your operator for cleanup"
                ) from exc

    async def last_operation(self, instance_id: str, operation_data: str | None = None) -> LastOperation:
        logger.info("broker_last_operation instance_id=%s", instance_id)
        async with self._sessions() as session:
            record = await instance_repo.get_instance(session, instance_id)
            if record is None:
                raise InstanceDoesNotExistError()
            provider = self._registry.provider_for(record.service_id)
            if not provider.provisions_async() and not provider.deprovisions_async():
                raise SynchronousPollError("Can't call LastOperation on a synchronous service")

            try:
                done = await provider.poll_instance(instance_id)
            except Exception as exc:  # noqa: BLE001 - poll failures become an operation state
                outcome = PollResult.IN_PROGRESS if is_transient(exc) else PollResult.FAILED
                if outcome is PollResult.FAILED:
                    logger.warning("broker_poll_failed instance_id=%s error=%s", instance_id, exc)
                return self._unfinished(outcome, str(exc))
            if not done:
                return self._unfinished(PollResult.IN_PROGRESS)

            try:
                was_delete = await provider.last_operation_was_delete(instance_id)
            except Exception as exc:  # noqa: BLE001 - backend already finished; report success with a warning
                logger.warning("broker_operation_kind_unknown instance_id=%s error=%s", instance_id, exc)
                return LastOperation(
                    state=OperationState.SUCCEEDED,
                    description=(
                        "Couldn't determine if provision or deprovision flow, this may leave orphaned "
                        "resources, contact your operator for cleanup"
                    ),
                )

            result = PollResult.DELETED if was_delete else PollResult.CREATED
            status = next_status(record.status, result)
            state = operation_state(result)
            try:
                if status is InstanceStatus.DELETED:
                    await instance_repo.soft_delete_instance(session, instance_id)
                else:
                    record.status = status.value
                    await instance_repo.save_instance(session, record)
                await session.commit()
            except PersistenceFailure as exc:
                logger.warning("broker_last_operation_cleanup_failed instance_id=%s error=%s", instance_id, exc)
                return LastOperation(
                    state=state,
                    description=(
                        f"Error deleting instance details from database: {exc}. WARNING: this instance will "
                        "remain visible in the platform. Contact your operator for cleanup"
                    ),
                )

        return LastOperation(state=state)

    @staticmethod
    def _unfinished(outcome: PollResult, description: str = "") -> LastOperation:
        # In-progress and failed polls leave the stored status as it is; nothing is written back.
        return LastOperation(state=operation_state(outcome), description=description)

    async def update(self, instance_id: str, details: UpdateDetails, async_allowed: bool) -> UpdateServiceSpec:
        logger.info("broker_update instance_id=%s plan_id=%s", instance_id, details.plan_id)
        raise PlanChangeNotSupportedError()
