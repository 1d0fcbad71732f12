from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from servicebroker.core.errors import ConstraintViolationError, RecordNotFoundError
from servicebroker.domain.models import ServiceBindingCredentials


async def count_binding(session: AsyncSession, instance_id: str, binding_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(ServiceBindingCredentials)
        .where(
            ServiceBindingCredentials.service_instance_id == instance_id,
            ServiceBindingCredentials.binding_id == binding_id,
            ServiceBindingCredentials.deleted_at.is_(None),
        )
    )
    return int(result.scalar() or 0)


async def create_binding(
    session: AsyncSession, binding: ServiceBindingCredentials
) -> ServiceBindingCredentials:
    session.add(binding)
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise ConstraintViolationError(
            f"binding {binding.binding_id!r} for instance {binding.service_instance_id!r} already recorded"
        ) from exc
    return binding


async def save_binding(session: AsyncSession, binding: ServiceBindingCredentials) -> ServiceBindingCredentials:
    merged = await session.merge(binding)
    await session.flush()
    return merged


async def get_binding(
    session: AsyncSession,
    instance_id: str,
    binding_id: str,
    *,
    include_deleted: bool = False,
) -> ServiceBindingCredentials | None:
    stmt = select(ServiceBindingCredentials).where(
        ServiceBindingCredentials.service_instance_id == instance_id,
        ServiceBindingCredentials.binding_id == binding_id,
    )
    if not include_deleted:
        stmt = stmt.where(ServiceBindingCredentials.deleted_at.is_(None))
    # Several deleted generations may share the pair; prefer the newest.
    result = await session.execute(stmt.order_by(ServiceBindingCredentials.id.desc()).limit(1))
    return result.scalar_one_or_none()


async def list_bindings_for_instance(
    session: AsyncSession, instance_id: str, *, include_deleted: bool = False
) -> list[ServiceBindingCredentials]:
    stmt = select(ServiceBindingCredentials).where(ServiceBindingCredentials.service_instance_id == instance_id)
    if not include_deleted:
        stmt = stmt.where(ServiceBindingCredentials.deleted_at.is_(None))
    result = await session.execute(stmt.order_by(ServiceBindingCredentials.id))
    return list(result.scalars().all())


async def soft_delete_binding(session: AsyncSession, instance_id: str, binding_id: str) -> ServiceBindingCredentials:
    binding = await get_binding(session, instance_id, binding_id)
    if binding is None:
        raise RecordNotFoundError(f"binding {binding_id!r} for instance {instance_id!r} not found")
    binding.deleted_at = datetime.now(timezone.utc)
    await session.flush()
    return binding


async def is_binding_soft_deleted(session: AsyncSession, instance_id: str, binding_id: str) -> bool:
    # A pair is soft-deleted when rows exist for it but none of them are live.
    if await count_binding(session, instance_id, binding_id) > 0:
        return False
    return await get_binding(session, instance_id, binding_id, include_deleted=True) is not None
