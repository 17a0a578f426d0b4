"""Financial document extraction client.

Sends one document (image or PDF, as a ``data:`` URL or remote URL) to the
vision model and decodes the reply strictly into an ``ExtractionResult``.
Failures are raised, never papered over here: the caller decides whether to
fall back (see ``fallback.py``).
"""

from __future__ import annotations

import datetime as dt
import logging
import time
from typing import Any

from pydantic import ValidationError

from app.core.config import get_settings
from app.schemas.finance import CATEGORY_VALUES, DocumentKind

from ..common import router as ai_router
from ..common.audit import log_ai_run
from ..common.errors import MalformedResponse
from ..common.json_tools import extract_json
from ..common.providers.base import Message
from .contracts import ExtractionResult

logger = logging.getLogger(__name__)

EXTRACT_SYSTEM_PROMPT = (
    "You are a financial assistant that analyzes and extracts transaction data from "
    "receipts, bills, invoices, and financial statements.\n\n"
    "FIRST: Determine if this is a valid financial document (receipt, bill, invoice, "
    "bank statement, etc.).\n"
    "REJECT if the image contains:\n"
    "- Non-financial content (photos, memes, random text, etc.)\n"
    "- Unreadable or corrupted images\n"
    "- Documents not related to financial transactions\n\n"
    "IF VALID: Extract ALL transactions from the document. Many receipts contain "
    "multiple items/transactions.\n\n"
    "Return a JSON object with:\n"
    "- isValidDocument: boolean (true only for receipts, bills, invoices, statements)\n"
    "- documentType: 'receipt' | 'bill' | 'invoice' | 'statement' | 'other'\n"
    "- rejectionReason: string (if isValidDocument is false, explain why)\n"
    "- transactions: array of ALL transactions found, each "
    "{date (YYYY-MM-DD), amount (positive number), category, description, type}\n"
    "- analysis: detailed explanation of what you found and extracted\n"
    "- confidence: number 0-1 indicating confidence in extraction\n\n"
    f"Categories must be one of: {', '.join(CATEGORY_VALUES)}\n"
    "Type must be 'expense' or 'income'.\n"
    "Use today's date ({today}) if the date is unclear.\n\n"
    "For receipts with multiple items, create a separate transaction for each "
    "significant item; never collapse a multi-item receipt into one total.\n"
    "For bills, extract each line item as a separate transaction if they represent "
    "different services.\n"
    "Respond ONLY with the JSON object, no markdown or explanation."
)

EXTRACT_USER_PROMPT = (
    "Please analyze this document and extract all transaction information if it is a "
    "valid financial document (receipt, bill, invoice, or statement). If it is not a "
    "financial document, reject it with an explanation."
)

DEFAULT_REJECTION_REASON = (
    "This does not appear to be a valid receipt, bill, or financial document."
)


def extraction_timeout(size_bytes: int) -> float:
    """Per-call timeout growing with the payload size, capped."""
    settings = get_settings()
    size_mb = size_bytes / (1024 * 1024)
    timeout = settings.ai_extract_timeout_seconds + settings.ai_extract_timeout_per_mb_seconds * size_mb
    return round(min(timeout, settings.ai_extract_timeout_max_seconds), 2)


def _document_part(document_ref: str, kind: DocumentKind, filename: str | None) -> dict[str, Any]:
    if kind == DocumentKind.PDF:
        return {
            "type": "file",
            "file": {"filename": filename or "document.pdf", "file_data": document_ref},
        }
    return {"type": "image_url", "image_url": {"url": document_ref}}


def build_extraction_messages(
    document_ref: str,
    *,
    kind: DocumentKind = DocumentKind.IMAGE,
    filename: str | None = None,
    today: str | None = None,
) -> list[Message]:
    """System rules followed by a user turn carrying the document."""
    today = today or dt.date.today().isoformat()
    return [
        {"role": "system", "content": EXTRACT_SYSTEM_PROMPT.replace("{today}", today)},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": EXTRACT_USER_PROMPT},
                _document_part(document_ref, kind, filename),
            ],
        },
    ]


def decode_extraction(raw_text: str) -> ExtractionResult:
    """Decode model output into an ``ExtractionResult`` or raise ``MalformedResponse``."""
    parsed = extract_json(raw_text)
    if not isinstance(parsed, dict):
        raise MalformedResponse("Extraction reply is not a JSON object", raw_text=raw_text[:500])
    try:
        result = ExtractionResult.model_validate(parsed)
    except ValidationError as exc:
        raise MalformedResponse(
            f"Extraction reply does not match the contract: {exc.error_count()} error(s)",
            raw_text=raw_text[:500],
        ) from exc

    if not result.is_valid_document and not (result.rejection_reason or "").strip():
        result.rejection_reason = DEFAULT_REJECTION_REASON
    return result


async def extract_document(
    document_ref: str,
    *,
    kind: DocumentKind = DocumentKind.IMAGE,
    filename: str | None = None,
    timeout_seconds: float | None = None,
    override_provider: str | None = None,
) -> ExtractionResult:
    """Classify and extract one document.

    Raises ``ServiceUnavailable`` when no provider is configured,
    ``TransportError`` when the call does not complete, and
    ``MalformedResponse`` when the reply does not decode.
    """
    config = ai_router.resolve("extract", override_provider=override_provider)
    messages = build_extraction_messages(document_ref, kind=kind, filename=filename)
    timeout = timeout_seconds if timeout_seconds is not None else config.timeout_seconds

    t0 = time.monotonic()
    result = await config.provider.generate(
        messages,
        model=config.model,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout_seconds=timeout,
        response_format={"type": "json_object"},
    )

    try:
        extraction = decode_extraction(result.raw_text)
    except MalformedResponse:
        logger.warning("Extraction reply did not decode: %s", result.raw_text[:200])
        log_ai_run(
            scope="extract",
            provider_result=result,
            messages=messages,
            extra_meta={"decoded": False, "kind": kind.value},
        )
        raise

    log_ai_run(
        scope="extract",
        provider_result=result,
        messages=messages,
        extra_meta={
            "decoded": True,
            "kind": kind.value,
            "is_valid_document": extraction.is_valid_document,
            "document_type": extraction.document_type.value,
            "transaction_count": len(extraction.transactions),
            "total_latency_ms": round((time.monotonic() - t0) * 1000, 2),
        },
    )
    return extraction
