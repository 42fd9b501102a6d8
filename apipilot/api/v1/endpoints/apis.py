# === apipilot/api/v1/endpoints/apis.py ===
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.future import select

from apipilot.api.deps import Services, get_services
from apipilot.db import crud
from apipilot.models.discovered_api import DiscoveredAPI
from apipilot.schemas.api import (
    AutoExecuteResponse,
    ConfigurationResponse,
    ConfigureRequest,
    ConfigureResponse,
    DiscoveredAPIDetail,
    DiscoveredAPIResponse,
    EndpointResponse,
    ExecuteRequest,
    ExecuteResponse,
)
from apipilot.schemas.document import DependencyCounts
from apipilot.services.executor import ExecutionNotAllowed

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_api_or_404(session, project_id: int, api_id: int) -> DiscoveredAPI:
    api = await crud.get_api(session, project_id, api_id)
    if api is None:
        raise HTTPException(status_code=404, detail="API not found")
    return api


@router.get("/{project_id}/apis", response_model=List[DiscoveredAPIResponse])
async def list_apis(project_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        result = await session.execute(
            select(DiscoveredAPI)
            .where(DiscoveredAPI.project_id == project_id)
            .order_by(DiscoveredAPI.id)
        )
        return result.scalars().all()


@router.get("/{project_id}/apis/{api_id}", response_model=DiscoveredAPIDetail)
async def get_api(project_id: int, api_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        api = await _get_api_or_404(session, project_id, api_id)
        endpoints = await crud.list_endpoints(session, api_id)
        config = await crud.get_configuration(session, api_id, active_only=False)

    return DiscoveredAPIDetail(
        **DiscoveredAPIResponse.model_validate(api).model_dump(),
        endpoints=[EndpointResponse.model_validate(ep) for ep in endpoints],
        configuration=ConfigurationResponse.model_validate(config) if config else None,
    )


@router.get("/{project_id}/apis/{api_id}/dependencies", response_model=DependencyCounts)
async def api_dependencies(project_id: int, api_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        await _get_api_or_404(session, project_id, api_id)
        counts = await crud.count_api_dependencies(session, api_id)
    return {"counts": counts}


@router.post("/{project_id}/apis/{api_id}/configure", response_model=ConfigureResponse)
async def configure_api(
    project_id: int,
    api_id: int,
    payload: ConfigureRequest,
    services: Services = Depends(get_services),
):
    async with services.session_factory() as session:
        api = await _get_api_or_404(session, project_id, api_id)
        await crud.upsert_configuration(
            session, api_id, payload.credentials, verify_tls=payload.verify_tls, test_status="pending"
        )
        await session.commit()

    test = await services.engine.test_connection(api, payload.credentials, verify_tls=payload.verify_tls)

    async with services.session_factory() as session:
        config = await crud.get_configuration(session, api_id, active_only=False)
        config.test_status = "success" if test["success"] else "failed"
        await session.commit()

    if test["success"]:
        message = "API configured and verified"
    else:
        message = f"API configured but verification failed: {test['error']}"
    return {"message": message, "config": ConfigurationResponse.model_validate(config)}


@router.post("/{project_id}/apis/{api_id}/execute", response_model=ExecuteResponse)
async def execute_api(
    project_id: int,
    api_id: int,
    payload: ExecuteRequest,
    services: Services = Depends(get_services),
):
    endpoint_ids = payload.endpoint_ids or ([payload.endpoint_id] if payload.endpoint_id else [])
    if not endpoint_ids:
        raise HTTPException(status_code=400, detail="No endpoint specified for execution.")

    async with services.session_factory() as session:
        api = await _get_api_or_404(session, project_id, api_id)
        config = await crud.get_configuration(session, api_id)
        by_id = {ep.id: ep for ep in await crud.list_endpoints(session, api_id)}

    missing = [i for i in endpoint_ids if i not in by_id]
    if missing:
        raise HTTPException(status_code=404, detail=f"Endpoint not found: {missing}")

    # saved credentials are optional
    credentials = config.credentials if config else {}
    verify_tls = payload.verify_tls
    if verify_tls is None:
        verify_tls = config.verify_tls if config else True

    endpoints = [by_id[i] for i in endpoint_ids]
    if len(endpoints) == 1:
        results = [await services.engine.execute(api, endpoints[0], credentials, payload.parameters, verify_tls)]
    else:
        results = await services.engine.batch(api, endpoints, credentials, payload.parameters, verify_tls)

    successful = [r.data for r in results if r.success]
    if successful and services.auto_intelligence:
        new_data = successful[0] if len(successful) == 1 else successful
        services.queue.submit(
            services.intelligence.refresh(project_id, new_data),
            name=f"auto-intelligence-{project_id}",
        )

    return {"message": "Execution completed", "results": [r.to_dict() for r in results]}


@router.post("/{project_id}/apis/{api_id}/auto-execute", response_model=AutoExecuteResponse)
async def auto_execute_api(project_id: int, api_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        api = await _get_api_or_404(session, project_id, api_id)

    try:
        report = await services.engine.auto_execute(api)
    except ExecutionNotAllowed as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "message": report.message,
        "results": [r.to_dict() for r in report.results],
        "success_count": report.success_count,
        "total": report.total,
    }


@router.delete("/{project_id}/apis/{api_id}")
async def delete_api(project_id: int, api_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        await _get_api_or_404(session, project_id, api_id)
        await crud.delete_api_cascade(session, api_id)
        await session.commit()
    return {"message": "API deleted successfully"}
