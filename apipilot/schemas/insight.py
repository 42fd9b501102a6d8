# === apipilot/schemas/insight.py ===
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional

class GenerateInsightsRequest(BaseModel):
    data_ids: List[int] = []

class InsightResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    type: Optional[str]
    title: str
    description: Optional[str]
    confidence: Optional[float]
    metadata: Optional[Dict] = Field(default=None, validation_alias="metadata_")
    created_at: Optional[datetime] = None

class InsightListResponse(BaseModel):
    insights: List[InsightResponse]

class DashboardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    title: str
    config: Dict
    is_active: bool
    created_at: Optional[datetime] = None

class DashboardListResponse(BaseModel):
    dashboards: List[DashboardResponse]
