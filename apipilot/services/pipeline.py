# === apipilot/services/pipeline.py ===
"""Document analysis pipeline.

Ingestion stores the document, hands the text to the external file store and
waits until it is ACTIVE. Analysis then runs as a background task; clients see
the outcome by polling the document status:

    processing -> analyzed -> completed
    processing | analyzed -> error

A failed document can be retried explicitly, which puts it back at `analyzed`
and re-runs the whole extraction.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional, Set

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from apipilot.core.exceptions import AnalysisError, FileProcessingError
from apipilot.db import crud
from apipilot.models.document import Document, DocumentStatus
from apipilot.models.project import Project
from apipilot.services.analyzer import DocumentAnalyzer
from apipilot.services.content import ExtractedContent
from apipilot.services.file_store import FileStore, staging_name, wait_for_active

logger = logging.getLogger(__name__)

NO_APIS_MESSAGE = (
    "Finished analysis but no API endpoints were discovered. "
    "Documentation might be non-technical or in an unsupported format."
)


class AnalysisQueue:
    """Keeps references to background tasks and logs the ones that blow up."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task {task.get_name()} was cancelled")
        elif task.exception() is not None:
            logger.error(f"Background task {task.get_name()} failed", exc_info=task.exception())

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class AnalysisPipeline:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        analyzer: DocumentAnalyzer,
        queue: AnalysisQueue,
        file_store: Optional[FileStore] = None,
        poll_interval: float = 2.0,
        poll_max_attempts: int = 30,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.analyzer = analyzer
        self.queue = queue
        self.file_store = file_store
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts
        self._sleep = sleep
        self._running: Set[int] = set()

    async def ingest(
        self,
        project_id: int,
        title: str,
        content: ExtractedContent,
        source_type: str = "file",
        source_url: Optional[str] = None,
    ) -> Document:
        async with self.session_factory() as session:
            document = Document(
                project_id=project_id,
                title=title,
                text_content=content.text,
                file_type=content.mime_type,
                source_type=source_type,
                source_url=source_url,
                status=DocumentStatus.PROCESSING.value,
                metadata_={"characters": len(content.text)},
            )
            session.add(document)
            await session.commit()
        logger.info(f"Document {document.id} '{title}' created for project {project_id}")

        if self.file_store is not None:
            try:
                await self._stage_in_file_store(document, content)
            except FileProcessingError as e:
                logger.error(f"Document {document.id} could not be staged: {e}")
                return await self._fail(document.id, str(e))

        document = await self._advance(document.id, DocumentStatus.ANALYZED)
        self._schedule(document.id)
        return document

    async def _stage_in_file_store(self, document: Document, content: ExtractedContent) -> None:
        filename, mime_type = staging_name(document.id, content.mime_type)
        stored = await self.file_store.upload(content.text.encode("utf-8"), filename, mime_type)
        async with self.session_factory() as session:
            row = await session.get(Document, document.id)
            row.file_uri = stored.uri
            row.file_name = stored.name
            await session.commit()

        logger.info(f"Waiting for file store to process {stored.name}")
        await wait_for_active(
            self.file_store,
            stored.name,
            max_attempts=self.poll_max_attempts,
            interval=self.poll_interval,
            sleep=self._sleep,
        )

    def _schedule(self, document_id: int) -> None:
        self._running.add(document_id)
        self.queue.submit(self.run_analysis(document_id), name=f"analyze-document-{document_id}")

    async def run_analysis(self, document_id: int) -> Optional[DocumentStatus]:
        try:
            async with self.session_factory() as session:
                document = await session.get(Document, document_id)
                if document is None:
                    logger.warning(f"Document {document_id} vanished before analysis")
                    return None
                project = await session.get(Project, document.project_id)
                settings = dict(project.settings or {}) if project else {}
                text, mime_type = document.text_content, document.file_type

            try:
                catalog = await self.analyzer.analyze(text, mime_type, settings)
                if not catalog.apis:
                    raise AnalysisError(catalog.error or NO_APIS_MESSAGE)

                async with self.session_factory() as session:
                    async with session.begin():
                        document = await session.get(Document, document_id)
                        await crud.replace_catalog(session, document.project_id, document.id, catalog.apis)
                        document.transition(DocumentStatus.COMPLETED)
            except Exception as e:
                logger.error(f"Analysis of document {document_id} failed: {e}")
                await self._fail(document_id, str(e) or e.__class__.__name__)
                return DocumentStatus.ERROR

            logger.info(f"Document {document_id} completed with {len(catalog.apis)} API(s)")
            return DocumentStatus.COMPLETED
        finally:
            self._running.discard(document_id)

    async def retry(self, document_id: int) -> Document:
        if document_id in self._running:
            raise AnalysisError("Analysis is already running for this document")

        async with self.session_factory() as session:
            document = await session.get(Document, document_id)
            if document is None:
                raise AnalysisError(f"Document {document_id} not found")
            if not document.text_content:
                raise AnalysisError("Document has no content to analyze")
            document.reopen()
            await session.commit()

        logger.info(f"Retrying analysis for document {document_id}")
        self._schedule(document_id)
        return document

    async def remove(self, document_id: int) -> None:
        async with self.session_factory() as session:
            document = await session.get(Document, document_id)
            if document is None:
                return
            file_name = document.file_name

            await crud.delete_document_catalog(session, document_id)
            await session.execute(delete(Document).where(Document.id == document_id))
            await session.commit()

        if file_name and self.file_store is not None:
            try:
                await self.file_store.delete(file_name)
            except FileProcessingError as e:
                logger.error(f"Error deleting {file_name} from file store: {e}")

    async def _advance(self, document_id: int, target: DocumentStatus) -> Document:
        async with self.session_factory() as session:
            document = await session.get(Document, document_id)
            document.transition(target)
            await session.commit()
        logger.info(f"Document {document_id} -> {target.value}")
        return document

    async def _fail(self, document_id: int, message: str) -> Optional[Document]:
        async with self.session_factory() as session:
            document = await session.get(Document, document_id)
            if document is None:
                return None
            current = DocumentStatus(document.status)
            if not DocumentStatus.can_transition(current, DocumentStatus.ERROR):
                logger.warning(f"Document {document_id} is {current.value}, not recording error: {message}")
                return document
            document.transition(DocumentStatus.ERROR, error_message=message)
            await session.commit()
        logger.info(f"Document {document_id} -> error")
        return document
