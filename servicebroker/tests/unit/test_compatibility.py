from __future__ import annotations

import pytest

from servicebroker.core.errors import InstanceDoesNotExistError, LegacyPlanError, PlanChangeNotSupportedError
from servicebroker.domain.catalog import LegacyUpgradePath
from servicebroker.domain.contracts import DeprovisionDetails, UnbindDetails, UpdateDetails
from servicebroker.domain.lifecycle import InstanceStatus
from servicebroker.domain.models import ServiceInstanceDetails
from servicebroker.persistence.repos import instances as instance_repo
from servicebroker.persistence.repos.plan_details import create_plan_details
from servicebroker.services.compatibility import LegacyPlanUpgrader
from servicebroker.tests.utils.broker import SYNC_PLAN_ID, SYNC_SERVICE_ID, bind_details, provision_details


LEGACY_PLAN_ID = "legacy-micro-id"


def _upgrade(**overrides) -> LegacyUpgradePath:
    values = {
        "service_id": SYNC_SERVICE_ID,
        "legacy_plan_id": LEGACY_PLAN_ID,
        "legacy_plan_name": "micro",
        "new_plan_id": SYNC_PLAN_ID,
        "new_plan_name": "default",
    }
    values.update(overrides)
    return LegacyUpgradePath(**values)


@pytest.fixture
def upgrader(broker, session_factory) -> LegacyPlanUpgrader:
    return LegacyPlanUpgrader(broker, session_factory, [_upgrade()])


async def _seed_legacy_instance(session_factory, instance_id: str = "old-1") -> None:
    async with session_factory() as session:
        await instance_repo.create_instance(
            session,
            ServiceInstanceDetails(
                id=instance_id,
                service_id=SYNC_SERVICE_ID,
                plan_id=LEGACY_PLAN_ID,
                name=f"fake-{instance_id}",
                status=InstanceStatus.ACTIVE.value,
            ),
        )
        await session.commit()


@pytest.mark.asyncio
async def test_discover_resolves_legacy_ids_from_plan_details(broker, session_factory) -> None:
    async with session_factory() as session:
        await create_plan_details(session, plan_id="generated-id", service_id=SYNC_SERVICE_ID, name="micro")
        await session.commit()

    upgrader = await LegacyPlanUpgrader.discover(
        broker,
        session_factory,
        [_upgrade(legacy_plan_id=None), _upgrade(legacy_plan_id=None, legacy_plan_name="unknown")],
    )

    assert [upgrade.legacy_plan_id for upgrade in upgrader.upgrades] == ["generated-id"]


@pytest.mark.asyncio
async def test_catalog_lists_legacy_plans_and_allows_updates(upgrader) -> None:
    entries = await upgrader.services()

    sync_entry = next(entry for entry in entries if entry["id"] == SYNC_SERVICE_ID)
    assert sync_entry["plan_updateable"] is True
    legacy = sync_entry["plans"][-1]
    assert legacy["id"] == LEGACY_PLAN_ID
    assert legacy["name"] == "legacy3-micro"
    other_entries = [entry for entry in entries if entry["id"] != SYNC_SERVICE_ID]
    assert all(entry["plan_updateable"] is False for entry in other_entries)


@pytest.mark.asyncio
async def test_provision_on_legacy_plan_is_rejected(upgrader, sync_provider) -> None:
    with pytest.raises(LegacyPlanError, match='use "default" instead'):
        await upgrader.provision("new-1", provision_details(plan_id=LEGACY_PLAN_ID), False)
    assert sync_provider.calls == []

    spec = await upgrader.provision("new-1", provision_details(), False)
    assert spec.is_async is False


@pytest.mark.asyncio
async def test_legacy_instances_must_be_upgraded_before_other_operations(upgrader, session_factory) -> None:
    await _seed_legacy_instance(session_factory)

    with pytest.raises(LegacyPlanError, match="cf update-service SERVICE_NAME -p default"):
        await upgrader.bind("old-1", "bind-1", bind_details())
    with pytest.raises(LegacyPlanError, match="trying to unbind"):
        await upgrader.unbind("old-1", "bind-1", UnbindDetails())
    with pytest.raises(LegacyPlanError, match="trying to deprovision"):
        await upgrader.deprovision("old-1", DeprovisionDetails(), False)
    with pytest.raises(InstanceDoesNotExistError):
        await upgrader.bind("missing", "bind-1", bind_details())


@pytest.mark.asyncio
async def test_update_moves_legacy_instance_to_its_replacement(upgrader, session_factory, sync_provider) -> None:
    await _seed_legacy_instance(session_factory)

    with pytest.raises(LegacyPlanError):
        await upgrader.update("old-1", UpdateDetails(plan_id="somewhere-else"), False)

    spec = await upgrader.update("old-1", UpdateDetails(plan_id=SYNC_PLAN_ID), False)

    assert spec.is_async is False
    async with session_factory() as session:
        record = await instance_repo.get_instance(session, "old-1")
    assert record.plan_id == SYNC_PLAN_ID
    # The backend is untouched by the upgrade.
    assert sync_provider.calls == []

    binding = await upgrader.bind("old-1", "bind-1", bind_details())
    assert binding.credentials["username"] == "user-bind-1"


@pytest.mark.asyncio
async def test_update_of_current_plan_instance_delegates(upgrader) -> None:
    await upgrader.provision("new-1", provision_details(), False)

    with pytest.raises(PlanChangeNotSupportedError):
        await upgrader.update("new-1", UpdateDetails(plan_id=SYNC_PLAN_ID), False)
