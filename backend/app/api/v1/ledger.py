import logging

from fastapi import APIRouter, Depends

from app.core.dependencies import get_assistant
from app.schemas.finance import (
    LedgerResponse,
    LedgerSummaryResponse,
    Transaction,
    TransactionCreate,
)
from app.services.ledger import basic_insights, summarize
from app.services.receipt_assistant import ReceiptAssistant

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/ledger", response_model=LedgerResponse)
async def get_ledger(assistant: ReceiptAssistant = Depends(get_assistant)):
    return LedgerResponse(items=assistant.ledger.snapshot())


@router.post("/ledger/transactions", response_model=Transaction, status_code=201)
async def add_transaction(
    payload: TransactionCreate,
    assistant: ReceiptAssistant = Depends(get_assistant),
):
    return assistant.ledger.add(payload)


@router.get("/ledger/summary", response_model=LedgerSummaryResponse)
async def get_ledger_summary(assistant: ReceiptAssistant = Depends(get_assistant)):
    snapshot = assistant.ledger.snapshot()
    summary = summarize(snapshot)
    return LedgerSummaryResponse(
        summary=summary,
        insights=basic_insights(summary),
        ai_insights=await assistant.fetch_insights(snapshot),
    )
