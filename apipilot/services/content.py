# apipilot/services/content.py
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import yaml

from apipilot.core.exceptions import UnsupportedContent

logger = logging.getLogger(__name__)

MIME_TYPES = {
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".html": "text/html",
    ".htm": "text/html",
    ".json": "application/json",
    ".yaml": "text/yaml",
    ".yml": "text/yaml",
}


@dataclass
class ExtractedContent:
    text: str
    mime_type: str
    title: Optional[str] = None


def parse_openapi_content(content: str) -> Dict[str, Any]:
    """Parse OpenAPI content JSON or YAML format"""
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid OpenAPI format. Must be valid JSON or YAML. Error: {e}")


def openapi_title(text: str) -> Optional[str]:
    try:
        parsed = parse_openapi_content(text)
    except ValueError:
        return None
    if isinstance(parsed, dict) and isinstance(parsed.get("info"), dict):
        return parsed["info"].get("title")
    return None


class ContentExtractor:
    """Turns uploads and URLs into plain text for the analyzer.

    Binary formats (PDF, Office) need an external converter and are rejected.
    """

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    def from_upload(self, filename: str, raw: bytes) -> ExtractedContent:
        ext = os.path.splitext(filename or "")[1].lower()
        if ext not in MIME_TYPES:
            raise UnsupportedContent(
                f"Invalid file type '{ext or filename}'. Allowed: {', '.join(sorted(MIME_TYPES))}"
            )

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise UnsupportedContent(f"Could not read file as UTF-8 text: {e}") from e

        mime_type = MIME_TYPES[ext]
        title = openapi_title(text) if mime_type in ("application/json", "text/yaml") else None
        return ExtractedContent(text=text, mime_type=mime_type, title=title)

    async def from_url(self, url: str) -> ExtractedContent:
        logger.info(f"Fetching documentation from {url}")
        async with httpx.AsyncClient(
            follow_redirects=True, timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.get(url)
            response.raise_for_status()

        content_type = response.headers.get("content-type", "text/html").split(";")[0].strip()
        text = response.text
        title = None
        if "json" in content_type or "yaml" in content_type or url.endswith((".json", ".yaml", ".yml")):
            title = openapi_title(text)
        return ExtractedContent(text=text, mime_type=content_type, title=title)
