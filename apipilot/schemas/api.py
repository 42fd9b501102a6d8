# === apipilot/schemas/api.py ===
from datetime import datetime
from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Optional

class EndpointResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    api_id: int
    method: str
    path: str
    description: Optional[str]
    parameters: List[Dict[str, Any]]
    category: Optional[str]
    estimated_value: Optional[str]
    execution_order: Optional[int]

class ConfigurationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    api_id: int
    is_active: bool
    auto_configured: bool
    verify_tls: bool
    test_status: Optional[str]
    last_tested: Optional[datetime]

class DiscoveredAPIResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    document_id: Optional[int]
    name: str
    description: Optional[str]
    base_url: str
    auth_type: str
    auth_details: Any
    execution_strategy: Optional[str]
    auto_executable: bool

class DiscoveredAPIDetail(DiscoveredAPIResponse):
    endpoints: List[EndpointResponse] = []
    configuration: Optional[ConfigurationResponse] = None

class ConfigureRequest(BaseModel):
    credentials: Dict[str, Any]
    verify_tls: bool = True

class ConfigureResponse(BaseModel):
    message: str
    config: ConfigurationResponse

class ExecuteRequest(BaseModel):
    endpoint_id: Optional[int] = None
    endpoint_ids: Optional[List[int]] = None
    parameters: Dict[str, Any] = {}
    verify_tls: Optional[bool] = None

class ExecutionResultResponse(BaseModel):
    endpoint_id: Optional[int]
    endpoint_path: str
    method: str
    success: bool
    status_code: Optional[int]
    data: Any = None
    error: Optional[str] = None
    response_body: Any = None
    duration_ms: int
    record_count: int = 0

class ExecuteResponse(BaseModel):
    message: str
    results: List[ExecutionResultResponse]

class AutoExecuteResponse(ExecuteResponse):
    success_count: int
    total: int
    auto_configured: bool = True
