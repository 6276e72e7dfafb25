"""
Knowledge feature: API routes for documents, chat, sync and the system prompt.

Application errors (AppBaseError) propagate to the handler registered in
main.py, which maps them to HTTP status codes.
"""

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status
from starlette.concurrency import run_in_threadpool

from kb_assistant.core.dependencies import (
    get_chat_service,
    get_document_store,
    get_file_source,
    get_knowledge_service,
    get_settings_service,
    get_sync_orchestrator,
)
from kb_assistant.core.exceptions import UnsupportedFormatError, app_error_to_http
from kb_assistant.features.knowledge.chat import ChatService
from kb_assistant.features.knowledge.extraction import extract_text_from_bytes, is_supported_file
from kb_assistant.features.knowledge.file_source import FileSource
from kb_assistant.features.knowledge.schemas import (
    AddDocumentRequest,
    AddDocumentResult,
    ChatRequest,
    ChatResult,
    ChunkMetadata,
    DocumentResponse,
    SystemPromptUpdate,
    UploadDocumentRequest,
)
from kb_assistant.features.knowledge.service import KnowledgeService
from kb_assistant.features.knowledge.store import DocumentStore
from kb_assistant.features.knowledge.sync import SyncOrchestrator
from kb_assistant.features.settings.service import AI_SYSTEM_PROMPT, SettingsService

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10MB


# ── Documents ────────────────────────────────────────────

@router.post("/documents", status_code=status.HTTP_201_CREATED)
def add_document(
    data: AddDocumentRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
):
    """Add one document as a single chunk (no splitting)."""
    metadata = ChunkMetadata(**data.metadata.model_dump()) if data.metadata else None
    result = service.add_document(data.content, metadata)
    return {"success": True, "message": "Document added", "data": result}


@router.post("/documents/upload", status_code=status.HTTP_201_CREATED)
def upload_document(
    data: UploadDocumentRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
):
    """Add long text; it is split into chunks and each chunk embedded."""
    result = service.add_document_from_text(
        data.content,
        title=data.title,
        subject=data.subject,
        grade=data.grade,
    )
    return {
        "success": True,
        "message": f"Document uploaded as {result.chunks_created} chunk(s)",
        "data": result,
    }


def _ingest_upload(
    service: KnowledgeService,
    file_bytes: bytes,
    file_name: str,
    mime_type: str,
    title: str,
    subject: str | None,
    grade: str | None,
) -> AddDocumentResult:
    try:
        text = extract_text_from_bytes(file_bytes, file_name, mime_type)
    except ValueError as e:
        logger.warning(f"⚠️ Could not read uploaded file {file_name}: {e}")
        raise app_error_to_http(UnsupportedFormatError(file_name, mime_type)) from e
    return service.add_document_from_text(text, title=title, subject=subject, grade=grade)


@router.post("/documents/file", status_code=status.HTTP_201_CREATED)
async def upload_document_file(
    file: UploadFile = File(...),
    title: str | None = Form(None),
    subject: str | None = Form(None),
    grade: str | None = Form(None),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    """Upload a .txt / .md / .docx file; its text is extracted then chunked."""
    file_name = file.filename or "document"
    mime_type = file.content_type or ""
    if not is_supported_file(mime_type, file_name):
        raise app_error_to_http(UnsupportedFormatError(file_name, mime_type))

    file_bytes = await file.read()
    if len(file_bytes) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="File too large. Maximum size for upload is 10MB.",
        )

    # DOCX parsing and embedding both block
    result = await run_in_threadpool(
        _ingest_upload,
        service,
        file_bytes,
        file_name,
        mime_type,
        title=title or file_name,
        subject=subject,
        grade=grade,
    )
    return {
        "success": True,
        "message": f"File '{file_name}' uploaded as {result.chunks_created} chunk(s)",
        "data": result,
    }


@router.get("/documents")
def list_documents(service: KnowledgeService = Depends(get_knowledge_service)):
    """List stored chunks without their vectors."""
    documents = [
        DocumentResponse(
            id=chunk.id,
            content=chunk.content,
            metadata=chunk.metadata,
            created_at=chunk.created_at,
        )
        for chunk in service.list_documents()
    ]
    return {"success": True, "data": documents, "total": len(documents)}


@router.delete("/documents/{document_id}")
def delete_document(
    document_id: int,
    service: KnowledgeService = Depends(get_knowledge_service),
):
    service.delete_document(document_id)
    return {"success": True, "message": f"Document {document_id} deleted"}


# ── Chat ─────────────────────────────────────────────────

@router.post("/chat", response_model=ChatResult)
def chat(
    data: ChatRequest,
    service: ChatService = Depends(get_chat_service),
):
    """Answer a question grounded in the knowledge base."""
    return service.chat(data.message, data.history)


# ── Sync ─────────────────────────────────────────────────

@router.post("/sync")
def start_sync(
    response: Response,
    background: bool = True,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    """Sync the external folder into the knowledge base.

    background=true returns immediately (accepted or busy) with the status
    snapshot; background=false runs to completion and returns the final
    status, or 409 while another run is in progress.
    """
    if background:
        launch = orchestrator.start_background()
        if not launch.accepted:
            response.status_code = status.HTTP_409_CONFLICT
        return {
            "success": launch.accepted,
            "message": launch.message,
            "data": orchestrator.get_status(),
        }

    final = orchestrator.run()
    if final.error:
        response.status_code = status.HTTP_502_BAD_GATEWAY
        return {"success": False, "message": final.error, "data": final}
    return {
        "success": True,
        "message": "Synchronization completed",
        "data": final,
        "result": SyncOrchestrator.to_result(final),
    }


@router.get("/sync/status")
def get_sync_status(orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    return {"success": True, "data": orchestrator.get_status()}


@router.post("/sync/cancel")
def cancel_sync(orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    """Ask a running sync to stop before its next file."""
    cancelled = orchestrator.cancel()
    message = "Cancellation requested" if cancelled else "No synchronization is running"
    return {"success": cancelled, "message": message}


@router.get("/sync/files")
def list_sync_files(source: FileSource = Depends(get_file_source)):
    """Files in the source folder, flagged by whether they can be indexed."""
    files = source.list_files()
    return {
        "success": True,
        "data": [
            {**f.model_dump(), "supported": source.is_supported(f)}
            for f in files
        ],
        "total": len(files),
    }


# ── System prompt ────────────────────────────────────────

@router.get("/system-prompt")
def get_system_prompt(settings_service: SettingsService = Depends(get_settings_service)):
    return {"success": True, "data": {"prompt": settings_service.get(AI_SYSTEM_PROMPT)}}


@router.put("/system-prompt")
def update_system_prompt(
    data: SystemPromptUpdate,
    settings_service: SettingsService = Depends(get_settings_service),
):
    settings_service.set(AI_SYSTEM_PROMPT, data.prompt)
    return {"success": True, "message": "System prompt updated", "data": {"prompt": data.prompt}}


@router.post("/system-prompt/reset")
def reset_system_prompt(settings_service: SettingsService = Depends(get_settings_service)):
    prompt = settings_service.reset_to_default(AI_SYSTEM_PROMPT)
    return {"success": True, "message": "System prompt reset to default", "data": {"prompt": prompt}}


# ── Health ───────────────────────────────────────────────

@router.get("/health")
def knowledge_health(
    store: DocumentStore = Depends(get_document_store),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    """Knowledge-base health: chunk count and whether a sync is running."""
    return {
        "status": "healthy",
        "documents": store.count(),
        "sync_running": orchestrator.is_running,
    }
