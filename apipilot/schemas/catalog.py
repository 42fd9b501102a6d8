# === apipilot/schemas/catalog.py ===
import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

AUTH_TYPE_ALIASES = {
    "apikey": "api_key",
    "api-key": "api_key",
    "api key": "api_key",
    "oauth2": "oauth",
    "": "none",
}


class CatalogParameter(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    type: Optional[str] = "string"
    required: bool = False
    description: Optional[str] = None
    example: Any = None
    auto_value: Any = None


class CatalogEndpoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    method: str = "GET"
    path: str
    description: Optional[str] = None
    category: Optional[str] = None
    estimated_value: Optional[str] = None
    parameters: List[CatalogParameter] = Field(default_factory=list)
    response_schema: Any = None
    execution_order: Optional[int] = None
    execution_steps: Optional[str] = None

    @field_validator("method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("parameters", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []

    @field_validator("execution_steps", mode="before")
    @classmethod
    def flatten_steps(cls, v):
        if v is None or isinstance(v, str):
            return v
        return json.dumps(v, ensure_ascii=False)


class CatalogAPI(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = "Unnamed API"
    description: Optional[str] = None
    base_url: str
    auth_type: str = "none"
    auth_details: Any = None
    execution_strategy: Optional[str] = None
    auto_executable: bool = False
    extracted_credentials: Optional[Dict[str, Any]] = None
    endpoints: List[CatalogEndpoint] = Field(default_factory=list)

    @field_validator("auth_type", mode="before")
    @classmethod
    def normalize_auth_type(cls, v) -> str:
        value = str(v or "").strip().lower()
        return AUTH_TYPE_ALIASES.get(value, value)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("execution_strategy", mode="before")
    @classmethod
    def flatten_strategy(cls, v):
        if v is None or isinstance(v, str):
            return v
        return json.dumps(v, ensure_ascii=False)

    @field_validator("endpoints", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []


class Catalog(BaseModel):
    """Shape the document analyzer asks the model to produce."""
    model_config = ConfigDict(extra="ignore")

    apis: List[CatalogAPI] = Field(default_factory=list)
    error: Optional[str] = None

    @field_validator("apis", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []
