import json
from typing import Any, Dict, List

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from apipilot.db.database import create_db_and_tables
from apipilot.models.discovered_api import DiscoveredAPI
from apipilot.models.endpoint import Endpoint
from apipilot.models.project import Project
from apipilot.services.file_store import FileState, StoredFile
from apipilot.services.inference import OPENAI, InferenceDispatcher


class StubBackend:
    """Inference backend that replays canned answers (or raises canned errors)."""

    name = "stub"

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.calls = []

    async def infer(self, model_id: str, prompt_text: str, options: Dict[str, Any]) -> str:
        self.calls.append({"model_id": model_id, "prompt_text": prompt_text, "options": options})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class StubFileStore:
    def __init__(self, states=None, upload_error: Exception = None):
        self.states = list(states or [FileState.ACTIVE])
        self.upload_error = upload_error
        self.uploaded = []
        self.deleted = []
        self.status_checks = 0

    async def upload(self, data: bytes, display_name: str, mime_type: str) -> StoredFile:
        if self.upload_error is not None:
            raise self.upload_error
        self.uploaded.append((display_name, data, mime_type))
        name = f"files/{len(self.uploaded)}"
        return StoredFile(uri=f"stub://{name}", name=name, display_name=display_name, mime_type=mime_type)

    async def status(self, name: str) -> FileState:
        self.status_checks += 1
        return self.states.pop(0) if len(self.states) > 1 else self.states[0]

    async def delete(self, name: str) -> None:
        self.deleted.append(name)


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


SAMPLE_CATALOG = {
    "apis": [
        {
            "name": "Billing",
            "description": "Invoices for collections",
            "base_url": "https://billing.example.com/",
            "auth_type": "basic",
            "auto_executable": True,
            "extracted_credentials": {"username": "a", "password": "b"},
            "endpoints": [
                {
                    "method": "post",
                    "path": "/auth/login",
                    "description": "Open a session",
                    "category": "auth",
                    "parameters": [
                        {"name": "username", "required": True},
                        {"name": "password", "required": True},
                    ],
                    "execution_order": 1,
                },
                {
                    "method": "GET",
                    "path": "/invoices",
                    "description": "List pending invoices",
                    "category": "data_fetch",
                    "parameters": [{"name": "status", "example": "pending"}],
                    "execution_order": 2,
                },
            ],
        }
    ]
}


def fenced(payload: Dict[str, Any]) -> str:
    return f"Here is the catalog:\n```json\n{json.dumps(payload)}\n```\nDone."


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_dispatcher(sleep):
    def _make(*responses, **kwargs):
        backend = StubBackend(responses)
        dispatcher = InferenceDispatcher({OPENAI: backend}, sleep=sleep, **kwargs)
        return dispatcher, backend
    return _make


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_db_and_tables(engine)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest_asyncio.fixture
async def project(session_factory):
    async with session_factory() as session:
        project = Project(name="Acme", settings={})
        session.add(project)
        await session.commit()
    return project


@pytest.fixture
def make_api(session_factory, project):
    async def _make(base_url="https://api.example.com", auth_type="none", endpoints=(),
                    auth_details=None, auto_executable=False, extracted_credentials=None):
        async with session_factory() as session:
            api = DiscoveredAPI(
                project_id=project.id,
                name="Test API",
                base_url=base_url,
                auth_type=auth_type,
                auth_details=auth_details,
                auto_executable=auto_executable,
                extracted_credentials=extracted_credentials,
            )
            session.add(api)
            await session.flush()
            rows = []
            for fields in endpoints:
                row = Endpoint(api_id=api.id, project_id=project.id, **{"parameters": [], **fields})
                session.add(row)
                rows.append(row)
            await session.commit()
        return api, rows
    return _make


def mock_transport(handler):
    """MockTransport that also keeps every request it served."""
    seen = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    transport = httpx.MockTransport(_handler)
    transport.seen = seen
    return transport
