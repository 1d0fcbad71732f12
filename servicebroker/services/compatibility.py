from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from servicebroker.core.errors import InstanceDoesNotExistError, LegacyPlanError
from servicebroker.domain.catalog import LegacyUpgradePath
from servicebroker.domain.contracts import (
    BindDetails,
    Binding,
    BrokerContract,
    DeprovisionDetails,
    DeprovisionServiceSpec,
    LastOperation,
    ProvisionDetails,
    ProvisionedServiceSpec,
    UnbindDetails,
    UpdateDetails,
    UpdateServiceSpec,
)
from servicebroker.domain.models import ServiceInstanceDetails
from servicebroker.persistence.repos import instances as instance_repo
from servicebroker.persistence.repos.plan_details import get_plan_details_by_service_and_name


logger = logging.getLogger(__name__)


class LegacyPlanUpgrader:
    """Wrap a broker so instances on plans from older releases can be moved to current plans.

    Legacy plans are listed in the catalog so platforms keep recognising existing
    instances, but the only operation allowed on them is an update to the designated
    replacement plan. That update rewrites the stored plan id without touching the backend.
    """

    def __init__(
        self,
        wrapped: BrokerContract,
        session_factory: async_sessionmaker[AsyncSession],
        upgrades: Iterable[LegacyUpgradePath] = (),
    ) -> None:
        self._wrapped = wrapped
        self._sessions = session_factory
        self._upgrades = [upgrade for upgrade in upgrades if upgrade.legacy_plan_id]

    @classmethod
    async def discover(
        cls,
        wrapped: BrokerContract,
        session_factory: async_sessionmaker[AsyncSession],
        candidates: Iterable[LegacyUpgradePath],
    ) -> "LegacyPlanUpgrader":
        # Legacy plan ids were generated per installation; keep only the ones this database knows.
        allowed: list[LegacyUpgradePath] = []
        async with session_factory() as session:
            for candidate in candidates:
                if candidate.legacy_plan_id:
                    allowed.append(candidate)
                    continue
                row = await get_plan_details_by_service_and_name(
                    session, candidate.service_id, candidate.legacy_plan_name
                )
                if row is None:
                    continue
                allowed.append(candidate.model_copy(update={"legacy_plan_id": row.id}))
        logger.info("legacy_upgrades_discovered count=%s", len(allowed))
        return cls(wrapped, session_factory, allowed)

    @property
    def upgrades(self) -> list[LegacyUpgradePath]:
        return list(self._upgrades)

    def _upgrade_path(self, service_id: str | None, plan_id: str | None) -> LegacyUpgradePath | None:
        for upgrade in self._upgrades:
            if upgrade.service_id == service_id and upgrade.legacy_plan_id == plan_id:
                return upgrade
        return None

    async def _load_instance(self, session: AsyncSession, instance_id: str) -> ServiceInstanceDetails:
        record = await instance_repo.get_instance(session, instance_id)
        if record is None:
            raise InstanceDoesNotExistError()
        return record

    async def _reject_legacy_instance(self, verb: str, instance_id: str) -> None:
        async with self._sessions() as session:
            record = await self._load_instance(session, instance_id)
        upgrade = self._upgrade_path(record.service_id, record.plan_id)
        if upgrade is None:
            return
        command = f"cf update-service SERVICE_NAME -p {upgrade.new_plan_name}"
        raise LegacyPlanError(
            f"The instance you're trying to {verb} is using an unsupported plan. "
            f"You must update it first by running `{command}`"
        )

    async def services(self) -> list[dict[str, Any]]:
        entries = await self._wrapped.services()
        augmented = []
        for entry in entries:
            compat_plans = [
                upgrade.to_catalog_entry() for upgrade in self._upgrades if upgrade.service_id == entry.get("id")
            ]
            if compat_plans:
                entry = {**entry, "plan_updateable": True, "plans": [*entry.get("plans", []), *compat_plans]}
            augmented.append(entry)
        return augmented

    async def provision(
        self, instance_id: str, details: ProvisionDetails, async_allowed: bool
    ) -> ProvisionedServiceSpec:
        upgrade = self._upgrade_path(details.service_id, details.plan_id)
        if upgrade is not None:
            raise LegacyPlanError(
                f'The plan "legacy3-{upgrade.legacy_plan_name}" is only available for compatibility '
                f'purposes, use "{upgrade.new_plan_name}" instead.'
            )
        return await self._wrapped.provision(instance_id, details, async_allowed)

    async def deprovision(
        self, instance_id: str, details: DeprovisionDetails, async_allowed: bool
    ) -> DeprovisionServiceSpec:
        await self._reject_legacy_instance("deprovision", instance_id)
        return await self._wrapped.deprovision(instance_id, details, async_allowed)

    async def bind(self, instance_id: str, binding_id: str, details: BindDetails) -> Binding:
        await self._reject_legacy_instance("bind", instance_id)
        return await self._wrapped.bind(instance_id, binding_id, details)

    async def unbind(self, instance_id: str, binding_id: str, details: UnbindDetails) -> None:
        await self._reject_legacy_instance("unbind", instance_id)
        await self._wrapped.unbind(instance_id, binding_id, details)

    async def last_operation(self, instance_id: str, operation_data: str | None = None) -> LastOperation:
        return await self._wrapped.last_operation(instance_id, operation_data)

    async def update(self, instance_id: str, details: UpdateDetails, async_allowed: bool) -> UpdateServiceSpec:
        async with self._sessions() as session:
            record = await self._load_instance(session, instance_id)
            upgrade = self._upgrade_path(record.service_id, record.plan_id)
            if upgrade is not None:
                if upgrade.new_plan_id != details.plan_id:
                    raise LegacyPlanError(f'you can only upgrade this legacy plan to "{upgrade.new_plan_name}"')
                record.plan_id = upgrade.new_plan_id
                await instance_repo.save_instance(session, record)
                await session.commit()
                logger.info(
                    "legacy_plan_upgraded instance_id=%s plan_id=%s", instance_id, upgrade.new_plan_id
                )
                return UpdateServiceSpec(is_async=False)
        return await self._wrapped.update(instance_id, details, async_allowed)
