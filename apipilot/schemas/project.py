# === apipilot/schemas/project.py ===
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional

class ProjectCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    settings: Dict[str, Any] = {}

class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    settings: Dict[str, Any]
