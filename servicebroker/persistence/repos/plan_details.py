from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from servicebroker.domain.models import PlanDetails


async def get_plan_details_by_service_and_name(
    session: AsyncSession, service_id: str, name: str
) -> PlanDetails | None:
    result = await session.execute(
        select(PlanDetails).where(
            PlanDetails.service_id == service_id,
            PlanDetails.name == name,
            PlanDetails.deleted_at.is_(None),
        )
    )
    return result.scalars().first()


async def create_plan_details(
    session: AsyncSession,
    *,
    plan_id: str,
    service_id: str,
    name: str,
    features: dict[str, Any] | None = None,
) -> PlanDetails:
    # Only used to seed historical rows; current releases never generate plan ids.
    record = PlanDetails(id=plan_id, service_id=service_id, name=name, features=features or {})
    session.add(record)
    await session.flush()
    return record
