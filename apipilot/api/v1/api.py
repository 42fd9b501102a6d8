# === apipilot/api/v1/api.py ===
from fastapi import APIRouter
from .endpoints import projects, documents, apis, insights

api_router = APIRouter()
api_router.include_router(projects.router, prefix="/projects", tags=["Projects"])
api_router.include_router(documents.router, prefix="/projects", tags=["Documents"])
api_router.include_router(apis.router, prefix="/projects", tags=["APIs"])
api_router.include_router(insights.router, prefix="/projects", tags=["Insights"])
