import asyncio
import json
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse

from app.core.config import get_settings
from app.core.dependencies import get_assistant
from app.core.image_processing import is_supported
from app.schemas.finance import (
    DocumentListResponse,
    DocumentOut,
    MergeResponse,
    UploadResponse,
)
from app.services.ai.common.errors import ServiceUnavailable
from app.services.receipt_assistant import ReceiptAssistant

router = APIRouter()
logger = logging.getLogger(__name__)

SSE_KEEPALIVE_SECONDS = 15


@router.post("/documents", response_model=UploadResponse, status_code=202)
async def upload_documents(
    files: list[UploadFile] = File(...),
    assistant: ReceiptAssistant = Depends(get_assistant),
):
    settings = get_settings()
    if not files:
        raise HTTPException(400, "No files uploaded")
    if len(files) > settings.max_upload_batch:
        raise HTTPException(400, f"At most {settings.max_upload_batch} files per upload")

    try:
        assistant.ensure_extraction_available()
    except ServiceUnavailable as exc:
        raise HTTPException(503, "Document extraction is not configured") from exc

    # Validate the whole batch before creating any document.
    payloads: list[tuple[bytes, UploadFile]] = []
    for upload in files:
        if not is_supported(upload.content_type, upload.filename):
            raise HTTPException(415, f"Unsupported file type: {upload.filename or upload.content_type}")
        content = await upload.read()
        if not content:
            raise HTTPException(400, f"Empty file: {upload.filename or 'upload'}")
        if len(content) > settings.max_document_bytes:
            raise HTTPException(413, f"File too large: {upload.filename or 'upload'}")
        payloads.append((content, upload))

    document_ids = []
    for content, upload in payloads:
        document_id = await assistant.upload_document(
            content,
            filename=upload.filename,
            content_type=upload.content_type,
        )
        document_ids.append(document_id)
    return UploadResponse(document_ids=document_ids)


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(assistant: ReceiptAssistant = Depends(get_assistant)):
    return DocumentListResponse(items=[doc.to_out() for doc in assistant.list_documents()])


@router.get("/documents/events")
async def stream_document_events(
    request: Request,
    assistant: ReceiptAssistant = Depends(get_assistant),
):
    queue = assistant.tracker.subscribe()

    async def event_stream():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                payload = event.to_out().model_dump(mode="json")
                yield f"event: {event.event}\ndata: {json.dumps(payload)}\n\n"
        finally:
            assistant.tracker.unsubscribe(queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/documents/{document_id}", response_model=DocumentOut)
async def get_document(document_id: str, assistant: ReceiptAssistant = Depends(get_assistant)):
    return assistant.get_document(document_id).to_out()


@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(document_id: str, assistant: ReceiptAssistant = Depends(get_assistant)):
    assistant.delete_document(document_id)


@router.post("/documents/{document_id}/merge", response_model=MergeResponse)
async def merge_document(document_id: str, assistant: ReceiptAssistant = Depends(get_assistant)):
    # Not-found ids surface as 404 through the app-level DocumentNotFound handler.
    merged = assistant.merge_into_ledger(document_id)
    return MergeResponse(document_id=document_id, merged=merged, ledger_size=len(assistant.ledger))
