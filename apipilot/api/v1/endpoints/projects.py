# === apipilot/api/v1/endpoints/projects.py ===
from fastapi import APIRouter, Depends, HTTPException

from apipilot.api.deps import Services, get_services
from apipilot.models.project import Project
from apipilot.schemas.project import ProjectCreateRequest, ProjectResponse

router = APIRouter()


async def get_project_or_404(session, project_id: int) -> Project:
    project = await session.get(Project, project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.post("/", response_model=ProjectResponse, status_code=201)
async def create_project(payload: ProjectCreateRequest, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        project = Project(
            name=payload.name,
            description=payload.description,
            settings=payload.settings,
        )
        session.add(project)
        await session.commit()
    return project


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        return await get_project_or_404(session, project_id)
