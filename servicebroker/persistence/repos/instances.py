from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from servicebroker.core.errors import ConstraintViolationError, RecordNotFoundError
from servicebroker.domain.lifecycle import InstanceStatus
from servicebroker.domain.models import ServiceInstanceDetails


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def count_instances(session: AsyncSession) -> int:
    # Live rows only; soft-deleted instances do not count against the limit.
    result = await session.execute(
        select(func.count())
        .select_from(ServiceInstanceDetails)
        .where(ServiceInstanceDetails.deleted_at.is_(None))
    )
    return int(result.scalar() or 0)


async def count_instance_by_id(session: AsyncSession, instance_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(ServiceInstanceDetails)
        .where(
            ServiceInstanceDetails.id == instance_id,
            ServiceInstanceDetails.deleted_at.is_(None),
        )
    )
    return int(result.scalar() or 0)


async def create_instance(session: AsyncSession, instance: ServiceInstanceDetails) -> ServiceInstanceDetails:
    # Flush immediately so primary key collisions surface here rather than at commit.
    session.add(instance)
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise ConstraintViolationError(f"service instance {instance.id!r} already recorded") from exc
    return instance


async def save_instance(session: AsyncSession, instance: ServiceInstanceDetails) -> ServiceInstanceDetails:
    merged = await session.merge(instance)
    await session.flush()
    return merged


async def get_instance(
    session: AsyncSession, instance_id: str, *, include_deleted: bool = False
) -> ServiceInstanceDetails | None:
    # Return None for missing or soft-deleted rows unless the audit path is requested.
    stmt = select(ServiceInstanceDetails).where(ServiceInstanceDetails.id == instance_id)
    if not include_deleted:
        stmt = stmt.where(ServiceInstanceDetails.deleted_at.is_(None))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_instances(session: AsyncSession, *, include_deleted: bool = False) -> list[ServiceInstanceDetails]:
    stmt = select(ServiceInstanceDetails)
    if not include_deleted:
        stmt = stmt.where(ServiceInstanceDetails.deleted_at.is_(None))
    result = await session.execute(stmt.order_by(ServiceInstanceDetails.created_at, ServiceInstanceDetails.id))
    return list(result.scalars().all())


async def soft_delete_instance(session: AsyncSession, instance_id: str) -> ServiceInstanceDetails:
    instance = await get_instance(session, instance_id)
    if instance is None:
        raise RecordNotFoundError(f"service instance {instance_id!r} not found")
    instance.deleted_at = _utc_now()
    instance.status = InstanceStatus.DELETED.value
    await session.flush()
    return instance


async def is_instance_soft_deleted(session: AsyncSession, instance_id: str) -> bool:
    instance = await get_instance(session, instance_id, include_deleted=True)
    return instance is not None and instance.deleted_at is not None


async def release_instance_claim(session: AsyncSession, instance_id: str) -> None:
    # Physically remove a provisioning claim whose backend create never happened.
    await session.execute(
        delete(ServiceInstanceDetails).where(
            ServiceInstanceDetails.id == instance_id,
            ServiceInstanceDetails.status == InstanceStatus.PROVISIONING.value,
            ServiceInstanceDetails.deleted_at.is_(None),
        )
    )
