from __future__ import annotations

import pytest

from servicebroker.core.errors import ConstraintViolationError, RecordNotFoundError
from servicebroker.domain.lifecycle import InstanceStatus
from servicebroker.domain.models import ServiceBindingCredentials, ServiceInstanceDetails
from servicebroker.persistence.repos import bindings as binding_repo
from servicebroker.persistence.repos import instances as instance_repo
from servicebroker.persistence.repos.plan_details import create_plan_details, get_plan_details_by_service_and_name
from servicebroker.persistence.repos.provision_requests import create_provision_request, list_provision_requests


def _instance(instance_id: str = "inst-1") -> ServiceInstanceDetails:
    return ServiceInstanceDetails(id=instance_id, service_id="svc", plan_id="plan", other_details={"host": "h"})


def _binding(binding_id: str = "bind-1", instance_id: str = "inst-1") -> ServiceBindingCredentials:
    return ServiceBindingCredentials(
        service_instance_id=instance_id,
        binding_id=binding_id,
        service_id="svc",
        other_details={"username": "u"},
    )


@pytest.mark.asyncio
async def test_instance_create_get_and_count(session_factory) -> None:
    async with session_factory() as session:
        await instance_repo.create_instance(session, _instance())
        await session.commit()

    async with session_factory() as session:
        record = await instance_repo.get_instance(session, "inst-1")
        assert record is not None
        assert record.status == InstanceStatus.PROVISIONING.value
        assert record.get_other_details() == {"host": "h"}
        assert await instance_repo.count_instance_by_id(session, "inst-1") == 1
        assert await instance_repo.count_instances(session) == 1
        assert await instance_repo.get_instance(session, "missing") is None


@pytest.mark.asyncio
async def test_duplicate_instance_id_is_a_constraint_violation(session_factory) -> None:
    async with session_factory() as session:
        await instance_repo.create_instance(session, _instance())
        await session.commit()

    async with session_factory() as session:
        with pytest.raises(ConstraintViolationError):
            await instance_repo.create_instance(session, _instance())


@pytest.mark.asyncio
async def test_soft_deleted_instance_is_hidden_but_auditable(session_factory) -> None:
    async with session_factory() as session:
        await instance_repo.create_instance(session, _instance())
        await instance_repo.soft_delete_instance(session, "inst-1")
        await session.commit()

    async with session_factory() as session:
        assert await instance_repo.count_instance_by_id(session, "inst-1") == 0
        assert await instance_repo.get_instance(session, "inst-1") is None
        assert await instance_repo.is_instance_soft_deleted(session, "inst-1") is True
        audited = await instance_repo.get_instance(session, "inst-1", include_deleted=True)
        assert audited is not None
        assert audited.deleted_at is not None
        assert audited.status == InstanceStatus.DELETED.value
        assert [row.id for row in await instance_repo.list_instances(session, include_deleted=True)] == ["inst-1"]
        assert await instance_repo.list_instances(session) == []


@pytest.mark.asyncio
async def test_soft_delete_of_missing_instance_raises(session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(RecordNotFoundError):
            await instance_repo.soft_delete_instance(session, "missing")


@pytest.mark.asyncio
async def test_release_claim_only_removes_provisioning_rows(session_factory) -> None:
    async with session_factory() as session:
        await instance_repo.create_instance(session, _instance("claim"))
        active = _instance("active")
        active.status = InstanceStatus.ACTIVE.value
        await instance_repo.create_instance(session, active)
        await session.commit()

    async with session_factory() as session:
        await instance_repo.release_instance_claim(session, "claim")
        await instance_repo.release_instance_claim(session, "active")
        await session.commit()

    async with session_factory() as session:
        assert await instance_repo.get_instance(session, "claim", include_deleted=True) is None
        assert await instance_repo.get_instance(session, "active") is not None


@pytest.mark.asyncio
async def test_live_binding_pair_is_unique_until_soft_deleted(session_factory) -> None:
    async with session_factory() as session:
        await binding_repo.create_binding(session, _binding())
        await session.commit()

    async with session_factory() as session:
        with pytest.raises(ConstraintViolationError):
            await binding_repo.create_binding(session, _binding())

    async with session_factory() as session:
        await binding_repo.soft_delete_binding(session, "inst-1", "bind-1")
        await session.commit()
        assert await binding_repo.is_binding_soft_deleted(session, "inst-1", "bind-1") is True

    async with session_factory() as session:
        # A deleted pair can be bound again.
        await binding_repo.create_binding(session, _binding())
        await session.commit()
        assert await binding_repo.count_binding(session, "inst-1", "bind-1") == 1
        assert await binding_repo.is_binding_soft_deleted(session, "inst-1", "bind-1") is False
        history = await binding_repo.list_bindings_for_instance(session, "inst-1", include_deleted=True)
        assert len(history) == 2


@pytest.mark.asyncio
async def test_binding_save_updates_credential_blob(session_factory) -> None:
    async with session_factory() as session:
        binding = await binding_repo.create_binding(session, _binding())
        await session.commit()

    binding.other_details = {"username": "rotated"}
    async with session_factory() as session:
        saved = await binding_repo.save_binding(session, binding)
        await session.commit()
        assert saved.binding_id == "bind-1"

    async with session_factory() as session:
        stored = await binding_repo.get_binding(session, "inst-1", "bind-1")
        assert stored is not None
        assert stored.get_other_details() == {"username": "rotated"}
        assert await binding_repo.count_binding(session, "inst-1", "bind-1") == 1


@pytest.mark.asyncio
async def test_instance_save_updates_status_and_details(session_factory) -> None:
    async with session_factory() as session:
        record = await instance_repo.create_instance(session, _instance())
        await session.commit()

    record.status = InstanceStatus.ACTIVE.value
    record.other_details = {"host": "h2"}
    async with session_factory() as session:
        await instance_repo.save_instance(session, record)
        await session.commit()

    async with session_factory() as session:
        stored = await instance_repo.get_instance(session, "inst-1")
        assert stored.status == InstanceStatus.ACTIVE.value
        assert stored.get_other_details() == {"host": "h2"}


@pytest.mark.asyncio
async def test_soft_delete_of_missing_binding_raises(session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(RecordNotFoundError):
            await binding_repo.soft_delete_binding(session, "inst-1", "nope")


@pytest.mark.asyncio
async def test_provision_requests_and_plan_details(session_factory) -> None:
    async with session_factory() as session:
        await create_provision_request(session, instance_id="inst-1", request_details={"size": 3})
        await create_provision_request(session, instance_id="inst-1", request_details=None)
        await create_plan_details(session, plan_id="legacy-id", service_id="svc", name="micro")
        await session.commit()

    async with session_factory() as session:
        requests = await list_provision_requests(session, "inst-1")
        assert [row.request_details for row in requests] == [{"size": 3}, {}]
        plan = await get_plan_details_by_service_and_name(session, "svc", "micro")
        assert plan is not None and plan.id == "legacy-id"
        assert await get_plan_details_by_service_and_name(session, "svc", "other") is None
