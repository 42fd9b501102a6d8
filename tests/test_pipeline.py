import json

import pytest
from sqlalchemy.future import select

from apipilot.core.exceptions import AnalysisError, FileProcessingError, InvalidStatusTransition
from apipilot.models.discovered_api import DiscoveredAPI
from apipilot.models.document import Document, DocumentStatus
from apipilot.models.endpoint import Endpoint
from apipilot.services.analyzer import DocumentAnalyzer
from apipilot.services.content import ExtractedContent
from apipilot.services.file_store import FileState
from apipilot.services.pipeline import NO_APIS_MESSAGE, AnalysisPipeline, AnalysisQueue

from conftest import SAMPLE_CATALOG, StubFileStore, fenced

CONTENT = ExtractedContent(text="# Billing API\nPOST /auth/login\nGET /invoices", mime_type="text/markdown")


@pytest.fixture
def make_pipeline(session_factory, make_dispatcher, sleep):
    def _make(*responses, file_store=None, **kwargs):
        dispatcher, backend = make_dispatcher(*responses)
        pipeline = AnalysisPipeline(
            session_factory,
            DocumentAnalyzer(dispatcher),
            AnalysisQueue(),
            file_store=file_store,
            sleep=sleep,
            **kwargs,
        )
        return pipeline, backend
    return _make


async def _load(session_factory, document_id):
    async with session_factory() as session:
        return await session.get(Document, document_id)


async def _catalog(session_factory, document_id):
    async with session_factory() as session:
        apis = (await session.execute(
            select(DiscoveredAPI).where(DiscoveredAPI.document_id == document_id)
        )).scalars().all()
        endpoints = (await session.execute(
            select(Endpoint).where(Endpoint.api_id.in_([a.id for a in apis])).order_by(Endpoint.id)
        )).scalars().all()
    return apis, endpoints


class TestIngestAndAnalyze:
    @pytest.mark.asyncio
    async def test_upload_to_completed(self, make_pipeline, session_factory, project):
        store = StubFileStore()
        pipeline, _ = make_pipeline(fenced(SAMPLE_CATALOG), file_store=store)

        document = await pipeline.ingest(project.id, "Billing docs", CONTENT)
        assert document.status == DocumentStatus.ANALYZED.value

        await pipeline.queue.join()

        document = await _load(session_factory, document.id)
        assert document.status == DocumentStatus.COMPLETED.value
        assert document.file_uri == "stub://files/1"
        assert document.error_message is None

        apis, endpoints = await _catalog(session_factory, document.id)
        assert len(apis) == 1
        assert apis[0].base_url == "https://billing.example.com"
        assert apis[0].extracted_credentials == {"username": "a", "password": "b"}
        assert [(e.method, e.path) for e in endpoints] == [("POST", "/auth/login"), ("GET", "/invoices")]

    @pytest.mark.asyncio
    async def test_single_endpoint_catalog(self, make_pipeline, session_factory, project):
        answer = ('{"apis":[{"name":"Users API","base_url":"https://x","auth_type":"basic",'
                  '"endpoints":[{"method":"GET","path":"/users","parameters":[]}]}]}')
        pipeline, _ = make_pipeline(answer, file_store=StubFileStore())

        document = await pipeline.ingest(
            project.id, "Users", ExtractedContent(text="GET /users list users, Basic Auth", mime_type="text/plain")
        )
        await pipeline.queue.join()

        assert (await _load(session_factory, document.id)).status == DocumentStatus.COMPLETED.value
        apis, endpoints = await _catalog(session_factory, document.id)
        assert [(a.name, a.auth_type) for a in apis] == [("Users API", "basic")]
        assert [(e.method, e.path, e.parameters) for e in endpoints] == [("GET", "/users", [])]

    @pytest.mark.asyncio
    async def test_staged_under_document_name_not_title(self, make_pipeline, session_factory, project):
        store = StubFileStore()
        pipeline, _ = make_pipeline(fenced(SAMPLE_CATALOG), file_store=store)

        markdown = await pipeline.ingest(project.id, "https://docs.example.com/billing", CONTENT)
        openapi = ExtractedContent(text="openapi: 3.0.0", mime_type="text/yaml", title="Petstore")
        yaml_doc = await pipeline.ingest(project.id, "Petstore", openapi)
        await pipeline.queue.join()

        assert [(name, mime) for name, _, mime in store.uploaded] == [
            (f"document-{markdown.id}.md", "text/markdown"),
            (f"document-{yaml_doc.id}.txt", "text/plain"),
        ]
        assert (await _load(session_factory, markdown.id)).title == "https://docs.example.com/billing"

    @pytest.mark.asyncio
    async def test_without_file_store(self, make_pipeline, session_factory, project):
        pipeline, _ = make_pipeline(fenced(SAMPLE_CATALOG))

        document = await pipeline.ingest(project.id, "Billing docs", CONTENT)
        await pipeline.queue.join()

        assert (await _load(session_factory, document.id)).status == DocumentStatus.COMPLETED.value
        assert pipeline.queue.pending == 0

    @pytest.mark.asyncio
    async def test_waits_for_file_to_become_active(self, make_pipeline, sleep, project):
        store = StubFileStore(states=[FileState.PROCESSING, FileState.PROCESSING, FileState.ACTIVE])
        pipeline, _ = make_pipeline(fenced(SAMPLE_CATALOG), file_store=store, poll_interval=2.0)

        await pipeline.ingest(project.id, "Billing docs", CONTENT)
        await pipeline.queue.join()

        assert store.status_checks == 3
        assert sleep.calls == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_failed_file_processing(self, make_pipeline, project):
        store = StubFileStore(states=[FileState.FAILED])
        pipeline, backend = make_pipeline(fenced(SAMPLE_CATALOG), file_store=store)

        document = await pipeline.ingest(project.id, "Billing docs", CONTENT)

        assert document.status == DocumentStatus.ERROR.value
        assert "failed" in document.error_message
        assert pipeline.queue.pending == 0
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_file_processing_timeout(self, make_pipeline, project):
        store = StubFileStore(states=[FileState.PROCESSING])
        pipeline, _ = make_pipeline(fenced(SAMPLE_CATALOG), file_store=store, poll_max_attempts=3)

        document = await pipeline.ingest(project.id, "Billing docs", CONTENT)

        assert document.status == DocumentStatus.ERROR.value
        assert "timeout" in document.error_message
        assert store.status_checks == 3

    @pytest.mark.asyncio
    async def test_upload_failure(self, make_pipeline, project):
        store = StubFileStore(upload_error=FileProcessingError("File upload failed: quota"))
        pipeline, _ = make_pipeline("{}", file_store=store)

        document = await pipeline.ingest(project.id, "Billing docs", CONTENT)

        assert document.status == DocumentStatus.ERROR.value
        assert document.error_message == "File upload failed: quota"

    @pytest.mark.asyncio
    async def test_no_apis_found(self, make_pipeline, session_factory, project):
        pipeline, _ = make_pipeline(json.dumps({"apis": []}))

        document = await pipeline.ingest(project.id, "Marketing brochure", CONTENT)
        await pipeline.queue.join()

        document = await _load(session_factory, document.id)
        assert document.status == DocumentStatus.ERROR.value
        assert document.error_message == NO_APIS_MESSAGE

    @pytest.mark.asyncio
    async def test_model_reported_error(self, make_pipeline, session_factory, project):
        pipeline, _ = make_pipeline(json.dumps({"apis": [], "error": "Document is a recipe"}))

        document = await pipeline.ingest(project.id, "Recipe", CONTENT)
        await pipeline.queue.join()

        assert (await _load(session_factory, document.id)).error_message == "Document is a recipe"

    @pytest.mark.asyncio
    async def test_unparseable_answer(self, make_pipeline, session_factory, project):
        pipeline, _ = make_pipeline("I cannot help with that.")

        document = await pipeline.ingest(project.id, "Billing docs", CONTENT)
        await pipeline.queue.join()

        document = await _load(session_factory, document.id)
        assert document.status == DocumentStatus.ERROR.value
        apis, _ = await _catalog(session_factory, document.id)
        assert apis == []

    @pytest.mark.asyncio
    async def test_project_model_hint_reaches_backend(self, make_pipeline, session_factory, project):
        async with session_factory() as session:
            row = await session.get(type(project), project.id)
            row.settings = {"ai_model": "gpt-4o-mini"}
            await session.commit()
        pipeline, backend = make_pipeline(fenced(SAMPLE_CATALOG))

        await pipeline.ingest(project.id, "Billing docs", CONTENT)
        await pipeline.queue.join()

        assert backend.calls[0]["model_id"] == "gpt-4o-mini"


class TestRetryAndRemove:
    @pytest.mark.asyncio
    async def test_retry_after_error(self, make_pipeline, session_factory, project):
        pipeline, _ = make_pipeline("not json", fenced(SAMPLE_CATALOG))

        document = await pipeline.ingest(project.id, "Billing docs", CONTENT)
        await pipeline.queue.join()
        assert (await _load(session_factory, document.id)).status == DocumentStatus.ERROR.value

        retried = await pipeline.retry(document.id)
        assert retried.status == DocumentStatus.ANALYZED.value
        assert retried.error_message is None
        await pipeline.queue.join()

        document = await _load(session_factory, document.id)
        assert document.status == DocumentStatus.COMPLETED.value
        apis, endpoints = await _catalog(session_factory, document.id)
        assert len(apis) == 1
        assert len(endpoints) == 2

    @pytest.mark.asyncio
    async def test_completed_document_cannot_be_retried(self, make_pipeline, project):
        pipeline, _ = make_pipeline(fenced(SAMPLE_CATALOG))

        document = await pipeline.ingest(project.id, "Billing docs", CONTENT)
        await pipeline.queue.join()

        with pytest.raises(InvalidStatusTransition):
            await pipeline.retry(document.id)

    @pytest.mark.asyncio
    async def test_missing_document(self, make_pipeline):
        pipeline, _ = make_pipeline("{}")
        with pytest.raises(AnalysisError):
            await pipeline.retry(999)

    @pytest.mark.asyncio
    async def test_remove_deletes_catalog_and_file(self, make_pipeline, session_factory, project):
        store = StubFileStore()
        pipeline, _ = make_pipeline(fenced(SAMPLE_CATALOG), file_store=store)

        document = await pipeline.ingest(project.id, "Billing docs", CONTENT)
        await pipeline.queue.join()
        await pipeline.remove(document.id)

        assert await _load(session_factory, document.id) is None
        assert await _catalog(session_factory, document.id) == ([], [])
        assert store.deleted == ["files/1"]


class TestDocumentStatus:
    def test_forward_transitions(self):
        assert DocumentStatus.can_transition(DocumentStatus.PROCESSING, DocumentStatus.ANALYZED)
        assert DocumentStatus.can_transition(DocumentStatus.ANALYZED, DocumentStatus.COMPLETED)
        assert DocumentStatus.can_transition(DocumentStatus.PROCESSING, DocumentStatus.ERROR)
        assert DocumentStatus.can_transition(DocumentStatus.ANALYZED, DocumentStatus.ERROR)

    def test_no_skipping_or_leaving_terminal_states(self):
        assert not DocumentStatus.can_transition(DocumentStatus.PROCESSING, DocumentStatus.COMPLETED)
        assert not DocumentStatus.can_transition(DocumentStatus.COMPLETED, DocumentStatus.ERROR)
        assert not DocumentStatus.can_transition(DocumentStatus.ERROR, DocumentStatus.COMPLETED)

    def test_transition_records_error(self):
        document = Document(status=DocumentStatus.ANALYZED.value)
        document.transition(DocumentStatus.ERROR, error_message="boom")
        assert document.status == "error"
        assert document.error_message == "boom"
        assert document.is_terminal

    def test_invalid_transition_raises(self):
        document = Document(status=DocumentStatus.COMPLETED.value)
        with pytest.raises(InvalidStatusTransition):
            document.transition(DocumentStatus.ANALYZED)

    def test_reopen(self):
        document = Document(status=DocumentStatus.ERROR.value, error_message="boom")
        document.reopen()
        assert document.status == "analyzed"
        assert document.error_message is None
