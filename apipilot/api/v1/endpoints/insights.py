# === apipilot/api/v1/endpoints/insights.py ===
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import delete
from sqlalchemy.future import select

from apipilot.api.deps import Services, get_services
from apipilot.api.v1.endpoints.projects import get_project_or_404
from apipilot.core.exceptions import InferenceError
from apipilot.models.insight import Dashboard, Insight
from apipilot.schemas.insight import (
    DashboardListResponse,
    GenerateInsightsRequest,
    InsightListResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{project_id}/insights", response_model=InsightListResponse)
async def list_insights(project_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        result = await session.execute(
            select(Insight)
            .where(Insight.project_id == project_id)
            .order_by(Insight.created_at.desc(), Insight.id.desc())
        )
        return {"insights": result.scalars().all()}


@router.post("/{project_id}/insights/generate", response_model=InsightListResponse)
async def generate_insights(
    project_id: int,
    payload: GenerateInsightsRequest,
    services: Services = Depends(get_services),
):
    async with services.session_factory() as session:
        await get_project_or_404(session, project_id)

    logger.info(f"Generating insights for project {project_id}...")
    try:
        insights = await services.intelligence.generate_from_records(project_id, payload.data_ids)
    except InferenceError as e:
        raise HTTPException(status_code=502, detail=f"Insight generation failed: {e}")
    return {"insights": insights}


@router.delete("/{project_id}/insights/{insight_id}")
async def delete_insight(project_id: int, insight_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        result = await session.execute(
            delete(Insight).where(Insight.id == insight_id, Insight.project_id == project_id)
        )
        await session.commit()
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Insight not found")
    return {"message": "Insight deleted successfully"}


@router.get("/{project_id}/dashboards", response_model=DashboardListResponse)
async def list_dashboards(project_id: int, active_only: bool = True, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        query = select(Dashboard).where(Dashboard.project_id == project_id)
        if active_only:
            query = query.where(Dashboard.is_active.is_(True))
        result = await session.execute(query.order_by(Dashboard.id.desc()))
        return {"dashboards": result.scalars().all()}
