from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from servicebroker.domain.models import ProvisionRequestDetails


async def create_provision_request(
    session: AsyncSession, *, instance_id: str, request_details: dict[str, Any] | None
) -> ProvisionRequestDetails:
    # Append-only; rows are never updated or deleted.
    record = ProvisionRequestDetails(service_instance_id=instance_id, request_details=request_details or {})
    session.add(record)
    await session.flush()
    return record


async def list_provision_requests(session: AsyncSession, instance_id: str) -> list[ProvisionRequestDetails]:
    result = await session.execute(
        select(ProvisionRequestDetails)
        .where(ProvisionRequestDetails.service_instance_id == instance_id)
        .order_by(ProvisionRequestDetails.id)
    )
    return list(result.scalars().all())
