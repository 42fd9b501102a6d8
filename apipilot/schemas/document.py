# === apipilot/schemas/document.py ===
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from typing import Dict, List, Optional

class DocumentFromUrlRequest(BaseModel):
    url: HttpUrl
    title: Optional[str] = None

class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    title: str
    file_type: Optional[str]
    source_type: str
    source_url: Optional[str]
    status: str
    error_message: Optional[str]
    metadata: Optional[Dict] = Field(default=None, validation_alias="metadata_")
    created_at: Optional[datetime] = None

class DocumentEnvelope(BaseModel):
    message: str
    document: DocumentResponse

class DocumentListResponse(BaseModel):
    documents: List[DocumentResponse]

class DependencyCounts(BaseModel):
    counts: Dict[str, int]
