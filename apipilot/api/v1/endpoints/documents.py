# === apipilot/api/v1/endpoints/documents.py ===
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.future import select

from apipilot.api.deps import Services, get_services
from apipilot.api.v1.endpoints.projects import get_project_or_404
from apipilot.core.exceptions import AnalysisError, InvalidStatusTransition, UnsupportedContent
from apipilot.db import crud
from apipilot.models.document import Document, DocumentStatus
from apipilot.schemas.document import (
    DependencyCounts,
    DocumentEnvelope,
    DocumentFromUrlRequest,
    DocumentListResponse,
    DocumentResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_document_or_404(session, project_id: int, document_id: int) -> Document:
    result = await session.execute(
        select(Document).where(Document.id == document_id, Document.project_id == project_id)
    )
    document = result.scalar_one_or_none()
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


def _envelope(document: Document, ok_message: str) -> DocumentEnvelope:
    if document.status == DocumentStatus.ERROR.value:
        message = f"Document could not be processed: {document.error_message}"
    else:
        message = ok_message
    return DocumentEnvelope(message=message, document=DocumentResponse.model_validate(document))


@router.post("/{project_id}/documents/upload", response_model=DocumentEnvelope, status_code=201)
async def upload_document(
    project_id: int,
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    services: Services = Depends(get_services),
):
    async with services.session_factory() as session:
        await get_project_or_404(session, project_id)

    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if len(raw) > services.max_upload_size:
        raise HTTPException(status_code=413, detail="File too large")

    try:
        content = services.extractor.from_upload(file.filename, raw)
    except UnsupportedContent as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Received upload {file.filename} ({len(raw)} bytes) for project {project_id}")
    document = await services.pipeline.ingest(
        project_id,
        title or content.title or file.filename,
        content,
        source_type="file",
    )
    return _envelope(document, "Document uploaded successfully")


@router.post("/{project_id}/documents/from-url", response_model=DocumentEnvelope, status_code=201)
async def document_from_url(
    project_id: int,
    payload: DocumentFromUrlRequest,
    services: Services = Depends(get_services),
):
    async with services.session_factory() as session:
        await get_project_or_404(session, project_id)

    url = str(payload.url)
    try:
        content = await services.extractor.from_url(url)
    except httpx.HTTPStatusError as e:
        raise HTTPException(
            status_code=400,
            detail=f"Failed to fetch URL. Status: {e.response.status_code}",
        )
    except httpx.RequestError as e:
        raise HTTPException(status_code=400, detail=f"Failed to fetch URL: {str(e)}")

    if not content.text.strip():
        raise HTTPException(status_code=400, detail="URL returned no content")

    document = await services.pipeline.ingest(
        project_id,
        payload.title or content.title or url,
        content,
        source_type="url",
        source_url=url,
    )
    return _envelope(document, "URL content received, analysis started")


@router.get("/{project_id}/documents", response_model=DocumentListResponse)
async def list_documents(project_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        result = await session.execute(
            select(Document)
            .where(Document.project_id == project_id)
            .order_by(Document.created_at.desc(), Document.id.desc())
        )
        return {"documents": result.scalars().all()}


@router.get("/{project_id}/documents/{document_id}", response_model=DocumentResponse)
async def get_document(project_id: int, document_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        return await _get_document_or_404(session, project_id, document_id)


@router.get("/{project_id}/documents/{document_id}/dependencies", response_model=DependencyCounts)
async def document_dependencies(project_id: int, document_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        await _get_document_or_404(session, project_id, document_id)
        counts = await crud.count_document_dependencies(session, document_id)
    return {"counts": counts}


@router.post("/{project_id}/documents/{document_id}/retry", response_model=DocumentEnvelope)
async def retry_document(project_id: int, document_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        await _get_document_or_404(session, project_id, document_id)

    try:
        document = await services.pipeline.retry(document_id)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except AnalysisError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return DocumentEnvelope(message="Analysis restarted", document=DocumentResponse.model_validate(document))


@router.delete("/{project_id}/documents/{document_id}")
async def delete_document(project_id: int, document_id: int, services: Services = Depends(get_services)):
    async with services.session_factory() as session:
        await _get_document_or_404(session, project_id, document_id)

    await services.pipeline.remove(document_id)
    return {"message": "Document deleted successfully"}
