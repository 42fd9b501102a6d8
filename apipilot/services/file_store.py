# === apipilot/services/file_store.py ===
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, Tuple

import openai
from openai import AsyncOpenAI

from apipilot.core.exceptions import FileProcessingError, FileProcessingTimeout

logger = logging.getLogger(__name__)


class FileState(str, enum.Enum):
    PROCESSING = "PROCESSING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"


@dataclass
class StoredFile:
    uri: str
    name: str
    display_name: str
    mime_type: str


class FileStore(Protocol):
    async def upload(self, data: bytes, display_name: str, mime_type: str) -> StoredFile:
        ...

    async def status(self, name: str) -> FileState:
        ...

    async def delete(self, name: str) -> None:
        ...


# extensions the Files API accepts; anything else is staged as plain text
_STAGING_EXTENSIONS = {
    "text/markdown": ".md",
    "text/html": ".html",
    "application/json": ".json",
}


def staging_name(document_id: int, mime_type: Optional[str]) -> Tuple[str, str]:
    """File name and mime type to stage a document under, independent of its title."""
    ext = _STAGING_EXTENSIONS.get(mime_type or "")
    if ext is None:
        return f"document-{document_id}.txt", "text/plain"
    return f"document-{document_id}{ext}", mime_type


_OPENAI_STATES = {
    "processed": FileState.ACTIVE,
    "error": FileState.FAILED,
}


class OpenAIFileStore:
    """Stores document content with the OpenAI Files API."""

    def __init__(self, api_key: str = "", client: Optional[AsyncOpenAI] = None, purpose: str = "assistants"):
        self._api_key = api_key
        self._client = client
        self.purpose = purpose

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise FileProcessingError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def upload(self, data: bytes, display_name: str, mime_type: str) -> StoredFile:
        try:
            uploaded = await self.client.files.create(
                file=(display_name, data, mime_type),
                purpose=self.purpose,
            )
        except openai.OpenAIError as e:
            raise FileProcessingError(f"File upload failed: {e}") from e

        logger.info(f"Uploaded {display_name} to file store as {uploaded.id}")
        return StoredFile(
            uri=f"openai://files/{uploaded.id}",
            name=uploaded.id,
            display_name=display_name,
            mime_type=mime_type,
        )

    async def status(self, name: str) -> FileState:
        try:
            stored = await self.client.files.retrieve(name)
        except openai.OpenAIError as e:
            raise FileProcessingError(f"Failed to get file status: {e}") from e
        return _OPENAI_STATES.get(getattr(stored, "status", None), FileState.PROCESSING)

    async def delete(self, name: str) -> None:
        try:
            await self.client.files.delete(name)
        except openai.OpenAIError as e:
            raise FileProcessingError(f"Failed to delete file {name}: {e}") from e
        logger.info(f"Deleted {name} from file store")


async def wait_for_active(
    store: FileStore,
    name: str,
    max_attempts: int = 30,
    interval: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FileState:
    for attempt in range(max_attempts):
        state = await store.status(name)
        if state is FileState.ACTIVE:
            return state
        if state is FileState.FAILED:
            raise FileProcessingError(f"File processing failed for {name}")
        logger.debug(f"{name} still processing ({attempt + 1}/{max_attempts})")
        await sleep(interval)

    raise FileProcessingTimeout(f"File processing timeout for {name} after {max_attempts} checks")
