# apipilot/api/deps.py
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from apipilot.core.config import Settings
from apipilot.services.analyzer import DocumentAnalyzer
from apipilot.services.content import ContentExtractor
from apipilot.services.executor import ExecutionEngine
from apipilot.services.file_store import FileStore, OpenAIFileStore
from apipilot.services.inference import (
    ANTHROPIC,
    OPENAI,
    AnthropicBackend,
    InferenceDispatcher,
    OpenAIBackend,
)
from apipilot.services.insights import InsightGenerator, IntelligenceService
from apipilot.services.pipeline import AnalysisPipeline, AnalysisQueue

logger = logging.getLogger(__name__)


@dataclass
class Services:
    session_factory: async_sessionmaker
    dispatcher: InferenceDispatcher
    analyzer: DocumentAnalyzer
    queue: AnalysisQueue
    pipeline: AnalysisPipeline
    engine: ExecutionEngine
    intelligence: IntelligenceService
    extractor: ContentExtractor
    auto_intelligence: bool = True
    max_upload_size: int = 50 * 1024 * 1024


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker,
    file_store: Optional[FileStore] = None,
) -> Services:
    dispatcher = InferenceDispatcher(
        backends={
            OPENAI: OpenAIBackend(settings.OPENAI_API_KEY, timeout=settings.INFERENCE_TIMEOUT),
            ANTHROPIC: AnthropicBackend(
                settings.ANTHROPIC_API_KEY,
                base_url=settings.ANTHROPIC_BASE_URL,
                version=settings.ANTHROPIC_VERSION,
                timeout=settings.INFERENCE_TIMEOUT,
            ),
        },
        default_backend=OPENAI,
        default_model=settings.OPENAI_MODEL,
        max_retries=settings.INFERENCE_MAX_RETRIES,
        base_delay=settings.INFERENCE_RETRY_BASE_DELAY,
        max_tokens=settings.INFERENCE_MAX_TOKENS,
    )

    if file_store is None and settings.OPENAI_API_KEY:
        file_store = OpenAIFileStore(settings.OPENAI_API_KEY)
    if file_store is None:
        logger.warning("No file store configured, documents are analyzed without staging")

    analyzer = DocumentAnalyzer(dispatcher, max_tokens=settings.INFERENCE_MAX_TOKENS)
    queue = AnalysisQueue()
    return Services(
        session_factory=session_factory,
        dispatcher=dispatcher,
        analyzer=analyzer,
        queue=queue,
        pipeline=AnalysisPipeline(
            session_factory,
            analyzer,
            queue,
            file_store=file_store,
            poll_interval=settings.FILE_POLL_INTERVAL,
            poll_max_attempts=settings.FILE_POLL_MAX_ATTEMPTS,
        ),
        engine=ExecutionEngine(
            session_factory,
            timeout=settings.EXECUTION_TIMEOUT,
            connection_test_timeout=settings.CONNECTION_TEST_TIMEOUT,
        ),
        intelligence=IntelligenceService(session_factory, InsightGenerator(dispatcher)),
        extractor=ContentExtractor(timeout=settings.EXECUTION_TIMEOUT),
        auto_intelligence=settings.AUTO_INTELLIGENCE,
        max_upload_size=settings.MAX_UPLOAD_SIZE,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
