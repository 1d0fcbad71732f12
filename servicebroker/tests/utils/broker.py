from __future__ import annotations

from typing import Any

from servicebroker.domain.catalog import ServiceDefinition, ServicePlan
from servicebroker.domain.contracts import BindDetails, ProvisionDetails


SYNC_SERVICE_ID = "sync-service"
SYNC_PLAN_ID = "sync-plan"
ASYNC_SERVICE_ID = "async-service"
ASYNC_PLAN_ID = "async-plan"
APP_SERVICE_ID = "app-only-service"
APP_PLAN_ID = "app-only-plan"


def sync_definition() -> ServiceDefinition:
    return ServiceDefinition(
        id=SYNC_SERVICE_ID,
        name="sync",
        provider="fake",
        plans=[ServicePlan(id=SYNC_PLAN_ID, name="default", service_properties={"tier": "basic"})],
    )


def async_definition() -> ServiceDefinition:
    return ServiceDefinition(
        id=ASYNC_SERVICE_ID,
        name="async",
        provider="fake-async",
        plans=[ServicePlan(id=ASYNC_PLAN_ID, name="default")],
    )


def app_only_definition() -> ServiceDefinition:
    return ServiceDefinition(
        id=APP_SERVICE_ID,
        name="app-only",
        provider="fake",
        requires_app_guid=True,
        plans=[ServicePlan(id=APP_PLAN_ID, name="default")],
    )


def provision_details(
    service_id: str = SYNC_SERVICE_ID,
    plan_id: str = SYNC_PLAN_ID,
    parameters: Any = None,
) -> ProvisionDetails:
    payload: dict[str, Any] = {
        "service_id": service_id,
        "plan_id": plan_id,
        "organization_guid": "org-1",
        "space_guid": "space-1",
    }
    if parameters is not None:
        payload["parameters"] = parameters
    return ProvisionDetails.model_validate(payload)


def bind_details(
    service_id: str = SYNC_SERVICE_ID,
    plan_id: str = SYNC_PLAN_ID,
    *,
    app_guid: str | None = "app-1",
    parameters: Any = None,
) -> BindDetails:
    payload: dict[str, Any] = {"service_id": service_id, "plan_id": plan_id, "app_guid": app_guid}
    if parameters is not None:
        payload["parameters"] = parameters
    return BindDetails.model_validate(payload)
