from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from servicebroker.apps.api.deps import get_broker, require_broker_auth
from servicebroker.apps.api.errors import broker_error_response
from servicebroker.apps.api.response import (
    DEFAULT_ERROR_RESPONSES,
    BindingResponse,
    CatalogResponse,
    EmptyResponse,
    LastOperationResponse,
    ProvisionResponse,
)
from servicebroker.domain.contracts import (
    BindDetails,
    BrokerContract,
    DeprovisionDetails,
    ProvisionDetails,
    UnbindDetails,
    UpdateDetails,
)


router = APIRouter(
    prefix="/v2",
    tags=["broker"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_broker_auth)],
)


def _json(model, status_code: int) -> JSONResponse:
    return JSONResponse(content=model.model_dump(exclude_none=True), status_code=status_code)


@router.get("/catalog", response_model=CatalogResponse)
async def catalog(broker: BrokerContract = Depends(get_broker)) -> JSONResponse:
    try:
        services = await broker.services()
    except Exception as exc:  # noqa: BLE001 - every failure becomes an error body
        return broker_error_response("catalog", exc)
    return _json(CatalogResponse(services=services), 200)


@router.put("/service_instances/{instance_id}", status_code=201, response_model=ProvisionResponse)
async def provision(
    instance_id: str,
    details: ProvisionDetails,
    accepts_incomplete: bool = False,
    broker: BrokerContract = Depends(get_broker),
) -> JSONResponse:
    try:
        spec = await broker.provision(instance_id, details, accepts_incomplete)
    except Exception as exc:  # noqa: BLE001 - every failure becomes an error body
        return broker_error_response("provision", exc)
    body = ProvisionResponse(dashboard_url=spec.dashboard_url or None)
    return _json(body, 202 if spec.is_async else 201)


@router.patch("/service_instances/{instance_id}", response_model=EmptyResponse)
async def update(
    instance_id: str,
    details: UpdateDetails,
    accepts_incomplete: bool = False,
    broker: BrokerContract = Depends(get_broker),
) -> JSONResponse:
    try:
        spec = await broker.update(instance_id, details, accepts_incomplete)
    except Exception as exc:  # noqa: BLE001 - every failure becomes an error body
        return broker_error_response("update", exc)
    return _json(EmptyResponse(), 202 if spec.is_async else 200)


@router.delete("/service_instances/{instance_id}", response_model=EmptyResponse)
async def deprovision(
    instance_id: str,
    service_id: str | None = None,
    plan_id: str | None = None,
    accepts_incomplete: bool = False,
    broker: BrokerContract = Depends(get_broker),
) -> JSONResponse:
    details = DeprovisionDetails(service_id=service_id, plan_id=plan_id)
    try:
        spec = await broker.deprovision(instance_id, details, accepts_incomplete)
    except Exception as exc:  # noqa: BLE001 - every failure becomes an error body
        return broker_error_response("deprovision", exc)
    return _json(EmptyResponse(), 202 if spec.is_async else 200)


@router.get("/service_instances/{instance_id}/last_operation", response_model=LastOperationResponse)
async def last_operation(
    instance_id: str,
    operation: str | None = None,
    broker: BrokerContract = Depends(get_broker),
) -> JSONResponse:
    try:
        result = await broker.last_operation(instance_id, operation)
    except Exception as exc:  # noqa: BLE001 - every failure becomes an error body
        return broker_error_response("last_operation", exc)
    return _json(LastOperationResponse(state=result.state.value, description=result.description), 200)


@router.put(
    "/service_instances/{instance_id}/service_bindings/{binding_id}",
    status_code=201,
    response_model=BindingResponse,
)
async def bind(
    instance_id: str,
    binding_id: str,
    details: BindDetails,
    broker: BrokerContract = Depends(get_broker),
) -> JSONResponse:
    try:
        binding = await broker.bind(instance_id, binding_id, details)
    except Exception as exc:  # noqa: BLE001 - every failure becomes an error body
        return broker_error_response("bind", exc)
    return _json(BindingResponse(credentials=binding.credentials), 201)


@router.delete("/service_instances/{instance_id}/service_bindings/{binding_id}", response_model=EmptyResponse)
async def unbind(
    instance_id: str,
    binding_id: str,
    service_id: str | None = None,
    plan_id: str | None = None,
    broker: BrokerContract = Depends(get_broker),
) -> JSONResponse:
    details = UnbindDetails(service_id=service_id, plan_id=plan_id)
    try:
        await broker.unbind(instance_id, binding_id, details)
    except Exception as exc:  # noqa: BLE001 - every failure becomes an error body
        return broker_error_response("unbind", exc)
    return _json(EmptyResponse(), 200)
