import logging

from fastapi import APIRouter, Depends

from app.core.dependencies import get_assistant
from app.schemas.finance import (
    ChatMessage,
    ChatMessageCreate,
    ChatSelectionRequest,
    ChatTranscriptResponse,
    InsightsRequest,
    InsightsResponse,
)
from app.services.receipt_assistant import ReceiptAssistant

router = APIRouter()
logger = logging.getLogger(__name__)


def _transcript(assistant: ReceiptAssistant) -> ChatTranscriptResponse:
    return ChatTranscriptResponse(
        items=assistant.transcript(),
        selected_document_id=assistant.selected_document_id,
    )


@router.post("/chat/messages", response_model=ChatMessage)
async def send_chat_message(
    payload: ChatMessageCreate,
    assistant: ReceiptAssistant = Depends(get_assistant),
):
    return await assistant.send_chat_message(payload.text, document_id=payload.document_id)


@router.get("/chat/messages", response_model=ChatTranscriptResponse)
async def get_chat_transcript(assistant: ReceiptAssistant = Depends(get_assistant)):
    return _transcript(assistant)


@router.put("/chat/selection", response_model=ChatTranscriptResponse)
async def select_chat_document(
    payload: ChatSelectionRequest,
    assistant: ReceiptAssistant = Depends(get_assistant),
):
    assistant.select_document(payload.document_id)
    return _transcript(assistant)


@router.post("/insights", response_model=InsightsResponse)
async def generate_insights(
    payload: InsightsRequest | None = None,
    assistant: ReceiptAssistant = Depends(get_assistant),
):
    snapshot = payload.transactions if payload else None
    return InsightsResponse(insights=await assistant.fetch_insights(snapshot))
