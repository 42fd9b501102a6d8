# === apipilot/db/crud.py ===
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from apipilot.models.api_configuration import APIConfiguration
from apipilot.models.discovered_api import DiscoveredAPI
from apipilot.models.endpoint import Endpoint
from apipilot.models.execution_record import ExecutionRecord
from apipilot.schemas.catalog import CatalogAPI


async def get_api(session: AsyncSession, project_id: int, api_id: int) -> Optional[DiscoveredAPI]:
    result = await session.execute(
        select(DiscoveredAPI).where(
            DiscoveredAPI.id == api_id, DiscoveredAPI.project_id == project_id
        )
    )
    return result.scalar_one_or_none()


async def list_endpoints(session: AsyncSession, api_id: int) -> List[Endpoint]:
    # catalog order is insertion order
    result = await session.execute(
        select(Endpoint).where(Endpoint.api_id == api_id).order_by(Endpoint.id)
    )
    return list(result.scalars().all())


async def get_configuration(session: AsyncSession, api_id: int, active_only: bool = True) -> Optional[APIConfiguration]:
    query = select(APIConfiguration).where(APIConfiguration.api_id == api_id)
    if active_only:
        query = query.where(APIConfiguration.is_active.is_(True))
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def upsert_configuration(
    session: AsyncSession,
    api_id: int,
    credentials: Dict,
    is_active: bool = True,
    auto_configured: bool = False,
    verify_tls: bool = True,
    test_status: Optional[str] = None,
) -> APIConfiguration:
    """One configuration per API, the latest write wins."""
    config = await get_configuration(session, api_id, active_only=False)
    if config is None:
        config = APIConfiguration(api_id=api_id)
        session.add(config)

    config.credentials = dict(credentials or {})
    config.is_active = is_active
    config.auto_configured = auto_configured
    config.verify_tls = verify_tls
    config.test_status = test_status
    config.last_tested = datetime.now(timezone.utc)
    await session.flush()
    return config


async def replace_catalog(
    session: AsyncSession, project_id: int, document_id: int, apis: List[CatalogAPI]
) -> List[DiscoveredAPI]:
    """Drop whatever an earlier attempt left for the document, then insert the new catalog."""
    await delete_document_catalog(session, document_id)

    saved = []
    for api in apis:
        discovered = DiscoveredAPI(
            project_id=project_id,
            document_id=document_id,
            name=api.name,
            description=api.description,
            base_url=api.base_url,
            auth_type=api.auth_type,
            auth_details=api.auth_details,
            execution_strategy=api.execution_strategy,
            auto_executable=api.auto_executable,
            extracted_credentials=api.extracted_credentials,
        )
        session.add(discovered)
        await session.flush()

        for ep in api.endpoints:
            session.add(Endpoint(
                api_id=discovered.id,
                project_id=project_id,
                method=ep.method,
                path=ep.path,
                description=ep.description,
                parameters=[p.model_dump(exclude_none=True) for p in ep.parameters],
                response_schema=ep.response_schema,
                category=ep.category,
                estimated_value=ep.estimated_value,
                execution_order=ep.execution_order,
                execution_steps=ep.execution_steps,
            ))
        saved.append(discovered)

    await session.flush()
    return saved


async def delete_document_catalog(session: AsyncSession, document_id: int) -> None:
    result = await session.execute(
        select(DiscoveredAPI.id).where(DiscoveredAPI.document_id == document_id)
    )
    for api_id in result.scalars().all():
        await delete_api_cascade(session, api_id)


async def delete_api_cascade(session: AsyncSession, api_id: int) -> None:
    # execution records are an audit trail, detach them instead of deleting
    await session.execute(
        update(ExecutionRecord)
        .where(ExecutionRecord.api_id == api_id)
        .values(api_id=None, endpoint_id=None)
    )
    await session.execute(delete(Endpoint).where(Endpoint.api_id == api_id))
    await session.execute(delete(APIConfiguration).where(APIConfiguration.api_id == api_id))
    await session.execute(delete(DiscoveredAPI).where(DiscoveredAPI.id == api_id))


async def count_document_dependencies(session: AsyncSession, document_id: int) -> Dict[str, int]:
    result = await session.execute(
        select(func.count(DiscoveredAPI.id)).where(DiscoveredAPI.document_id == document_id)
    )
    return {"apis": result.scalar() or 0}


async def count_api_dependencies(session: AsyncSession, api_id: int) -> Dict[str, int]:
    counts = {}
    for key, column, owner in (
        ("endpoints", Endpoint.id, Endpoint.api_id),
        ("configurations", APIConfiguration.id, APIConfiguration.api_id),
        ("executions", ExecutionRecord.id, ExecutionRecord.api_id),
    ):
        result = await session.execute(select(func.count(column)).where(owner == api_id))
        counts[key] = result.scalar() or 0
    return counts
