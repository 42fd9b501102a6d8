# === apipilot/services/analyzer.py ===
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from apipilot.core.exceptions import AnalysisError
from apipilot.schemas.catalog import Catalog
from apipilot.services.inference import InferenceDispatcher

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You are extracting an API configuration so that its endpoints can be executed AUTOMATICALLY, without asking the user anything.

Read the API documentation below and extract:
1. BASE URL - the entry point of the API.
2. AUTHENTICATION - the scheme and any real credential values present in the document.
3. ENDPOINTS - every capability the API offers.
4. PARAMETERS - with example values usable for automatic execution.
5. EXECUTION STRATEGY - the logical order in which to call the endpoints (authentication first).

Describe every API and endpoint in business terms: explain what it does for the company,
not how it is implemented ("List pending invoices for collections" rather than "GET /invoices").

OUTPUT FORMAT (STRICT JSON):
{{
  "apis": [{{
    "name": "Business name of the API",
    "description": "Business oriented description",
    "base_url": "https://api.example.com",
    "auth_type": "none|basic|bearer|api_key|token|ticket|oauth|custom",
    "auto_executable": true,
    "extracted_credentials": {{"username": "...", "password": "...", "api_key": "...", "ticket": "..."}},
    "auth_details": {{
      "header_name": "Authorization",
      "format": "Basic base64(username:password)",
      "guide": "Short guide to obtain access"
    }},
    "execution_strategy": "Step by step execution plan",
    "endpoints": [
      {{
        "method": "GET|POST|PUT|PATCH|DELETE",
        "path": "/v1/resource",
        "description": "Functional name",
        "category": "auth|data_fetch|data_modify|other",
        "estimated_value": "high|medium|low",
        "parameters": [
          {{
            "name": "name",
            "type": "string",
            "required": true,
            "description": "...",
            "example": "...",
            "auto_value": "..."
          }}
        ],
        "execution_order": 1,
        "execution_steps": "Business instructions"
      }}
    ]
  }}]
}}

Document MIME type: {mime_type}

RETURN ONLY VALID JSON. NO MARKDOWN FENCES."""


class DocumentAnalyzer:
    """Turns raw documentation text into a catalog of APIs and endpoints."""

    def __init__(self, dispatcher: InferenceDispatcher, max_tokens: int = 8192):
        self.dispatcher = dispatcher
        self.max_tokens = max_tokens

    def build_prompt(self, mime_type: Optional[str]) -> str:
        return EXTRACTION_PROMPT.format(mime_type=mime_type or "text/plain")

    async def analyze(self, document_text: str, mime_type: Optional[str] = None, settings: Optional[Dict[str, Any]] = None) -> Catalog:
        if not document_text or not document_text.strip():
            raise AnalysisError("Document has no content to analyze")

        hint = (settings or {}).get("ai_model")
        logger.info(f"Analyzing document ({len(document_text)} characters, {mime_type}) with model hint {hint!r}")

        raw = await self.dispatcher.infer(
            self.build_prompt(mime_type),
            document_text,
            provider_hint=hint,
            temperature=0.4,
            max_tokens=self.max_tokens,
        )

        try:
            catalog = Catalog.model_validate(raw)
        except ValidationError as e:
            raise AnalysisError(f"AI response does not match the catalog format: {e}") from e

        logger.info(f"Analysis complete. Discovered {len(catalog.apis)} APIs")
        return catalog
