"""End-to-end tests for the receipt assistant pipeline.

Covers:
- upload -> extraction -> completed / rejected / fallback
- merge into the ledger (fresh ids, no dedup)
- delete while extraction is in flight
- chat context, selection and fallback replies
- insights over the ledger
"""

import asyncio
import json
from unittest.mock import patch

import pytest

from app.schemas.finance import DocumentStatus
from app.services.ai.common.errors import MalformedResponse, ServiceUnavailable, TransportError
from app.services.ai.common.providers.base import BaseProvider, ProviderResult
from app.services.ai.document_extract.contracts import ExtractionResult
from app.services.ai.receipt_chat.contracts import FALLBACK_REPLIES
from app.services.document_tracker import DocumentNotFound
from app.services.ledger import summarize
from conftest import make_transaction

PATCH_PROVIDER = "app.services.ai.common.router.get_provider"

RECEIPT = json.dumps(
    {
        "isValidDocument": True,
        "documentType": "receipt",
        "transactions": [
            {"date": "2024-02-10", "amount": 3.99, "category": "food", "description": "Milk", "type": "expense"},
            {"date": "2024-02-10", "amount": 2.49, "category": "food", "description": "Bread", "type": "expense"},
            {"date": "2024-02-10", "amount": 5.0, "category": "shopping", "description": "Batteries", "type": "expense"},
        ],
        "analysis": "Grocery receipt with 3 items totalling $11.48.",
        "confidence": 0.95,
    }
)

NOT_A_RECEIPT = json.dumps(
    {
        "isValidDocument": False,
        "documentType": "other",
        "rejectionReason": "The image shows a mountain landscape, not a financial document.",
        "transactions": [],
        "analysis": "",
        "confidence": 0.9,
    }
)


FOOD_RECEIPT = json.dumps(
    {
        "isValidDocument": True,
        "documentType": "receipt",
        "transactions": [
            {"date": "2024-03-05", "amount": 12.50, "category": "food", "description": "Pizza", "type": "expense"},
            {"date": "2024-03-05", "amount": 3.00, "category": "food", "description": "Soda", "type": "expense"},
        ],
        "analysis": "Restaurant receipt with 2 items totalling $15.50.",
        "confidence": 0.92,
    }
)


def _receipt_with_item(**overrides) -> str:
    item = {"date": "2024-03-05", "amount": 4.0, "category": "food", "description": "Bagel", "type": "expense"}
    item.update(overrides)
    return json.dumps(
        {
            "isValidDocument": True,
            "documentType": "receipt",
            "transactions": [item],
            "analysis": "One item.",
            "confidence": 0.8,
        }
    )


class ScriptedProvider(BaseProvider):
    """Answers extraction calls by filename and chat/insight calls with fixed text."""

    name = "scripted"

    def __init__(self, extractions=None, reply="Here is what I see.", insights='["Save more"]'):
        self.extractions = extractions or {}
        self.reply = reply
        self.insights = insights
        self.calls: list[list[dict]] = []

    async def generate(self, messages, *, response_format=None, **kwargs):
        self.calls.append(messages)
        if response_format:
            part = messages[-1]["content"][1]
            key = part["file"]["filename"] if part["type"] == "file" else "image"
            outcome = self.extractions[key]
        elif "financial advisor" in messages[0]["content"]:
            outcome = self.insights
        else:
            outcome = self.reply
        if isinstance(outcome, Exception):
            raise outcome
        return ProviderResult(raw_text=outcome, model="scripted-1", provider=self.name)


class BlockingProvider(BaseProvider):
    name = "blocking"

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, messages, **kwargs):
        self.started.set()
        await self.release.wait()
        return ProviderResult(raw_text=RECEIPT, model="blocking", provider=self.name)


async def _upload_pdf(assistant, name: str) -> str:
    return await assistant.upload_document(b"%PDF-1.4 " + name.encode(), filename=name, content_type="application/pdf")


# ─── Extraction outcomes ──────────────────────────────────


@pytest.mark.asyncio
async def test_multi_item_receipt_completes_with_every_item(assistant):
    provider = ScriptedProvider({"groceries.pdf": RECEIPT})
    with patch(PATCH_PROVIDER, return_value=provider):
        doc_id = await _upload_pdf(assistant, "groceries.pdf")
        assert assistant.get_document(doc_id).status == DocumentStatus.PROCESSING
        doc = await assistant.wait_for_document(doc_id)

    assert doc.status == DocumentStatus.COMPLETED
    assert [t.description for t in doc.extracted_transactions] == ["Milk", "Bread", "Batteries"]
    assert doc.analysis.startswith("Grocery receipt")
    assert doc.confidence == pytest.approx(0.95)
    assert not doc.degraded


@pytest.mark.asyncio
async def test_non_financial_document_is_rejected(assistant):
    provider = ScriptedProvider({"mountain.pdf": NOT_A_RECEIPT})
    with patch(PATCH_PROVIDER, return_value=provider):
        doc = await assistant.wait_for_document(await _upload_pdf(assistant, "mountain.pdf"))

    assert doc.status == DocumentStatus.REJECTED
    assert doc.analysis == "The image shows a mountain landscape, not a financial document."
    assert doc.extracted_transactions == []
    assert assistant.merge_into_ledger(doc.id) == []
    assert len(assistant.ledger) == 0


@pytest.mark.parametrize(
    "failure",
    [TransportError("timed out"), MalformedResponse("not json"), TransportError("bad gateway", status_code=502)],
)
@pytest.mark.asyncio
async def test_extraction_failure_falls_back(assistant, failure):
    provider = ScriptedProvider({"blurry.pdf": failure})
    with patch(PATCH_PROVIDER, return_value=provider):
        doc = await assistant.wait_for_document(await _upload_pdf(assistant, "blurry.pdf"))

    assert doc.status == DocumentStatus.COMPLETED
    assert doc.degraded
    assert [t.amount for t in doc.extracted_transactions] == [25.99, 3.50]
    assert "bill" in doc.analysis


@pytest.mark.asyncio
async def test_garbage_reply_falls_back(assistant):
    provider = ScriptedProvider({"odd.pdf": "Sorry, I can't read that."})
    with patch(PATCH_PROVIDER, return_value=provider):
        doc = await assistant.wait_for_document(await _upload_pdf(assistant, "odd.pdf"))

    assert doc.status == DocumentStatus.COMPLETED
    assert doc.degraded


@pytest.mark.parametrize(
    "overrides",
    [
        {"amount": 0.004},
        {"description": "x" * 600},
        {"category": "c" * 65},
    ],
    ids=["sub-cent-amount", "long-description", "long-category"],
)
@pytest.mark.asyncio
async def test_out_of_range_line_item_still_reaches_terminal_state(assistant, overrides):
    provider = ScriptedProvider({"odd-item.pdf": _receipt_with_item(**overrides)})
    with patch(PATCH_PROVIDER, return_value=provider):
        doc_id = await _upload_pdf(assistant, "odd-item.pdf")
        await assistant.wait_idle()

    doc = assistant.get_document(doc_id)
    assert doc.status != DocumentStatus.PROCESSING
    assert doc.status == DocumentStatus.REJECTED or doc.degraded


@pytest.mark.asyncio
async def test_failure_building_transactions_falls_back(assistant):
    provider = ScriptedProvider({"r.pdf": RECEIPT})
    with (
        patch(PATCH_PROVIDER, return_value=provider),
        patch.object(ExtractionResult, "to_transactions", side_effect=ValueError("bad item")),
    ):
        doc = await assistant.wait_for_document(await _upload_pdf(assistant, "r.pdf"))

    assert doc.status == DocumentStatus.COMPLETED
    assert doc.degraded


@pytest.mark.asyncio
async def test_string_false_verdict_is_a_rejection(assistant):
    reply = json.dumps(
        {
            "isValidDocument": "false",
            "rejectionReason": "This is a cat photo.",
            "transactions": [{"amount": -1, "category": "", "type": "gift"}],
        }
    )
    with patch(PATCH_PROVIDER, return_value=ScriptedProvider({"cat.pdf": reply})):
        doc = await assistant.wait_for_document(await _upload_pdf(assistant, "cat.pdf"))

    assert doc.status == DocumentStatus.REJECTED
    assert doc.analysis == "This is a cat photo."
    assert not doc.degraded


@pytest.mark.asyncio
async def test_crashed_task_is_logged(assistant, caplog):
    with patch.object(assistant.tracker, "complete", side_effect=RuntimeError("boom")):
        with patch(PATCH_PROVIDER, return_value=ScriptedProvider({"r.pdf": RECEIPT})):
            await _upload_pdf(assistant, "r.pdf")
            await assistant.wait_idle()
        await asyncio.sleep(0)

    assert "crashed" in caplog.text


@pytest.mark.asyncio
async def test_image_upload_with_mock_provider(assistant, png_bytes):
    doc_id = await assistant.upload_document(png_bytes, filename="receipt.png", content_type="image/png")
    doc = await assistant.wait_for_document(doc_id)

    assert doc.status == DocumentStatus.COMPLETED
    assert doc.extracted_transactions[0].description == "Mock receipt item"
    assert not doc.degraded


@pytest.mark.asyncio
async def test_upload_refused_when_unconfigured(assistant, monkeypatch):
    monkeypatch.setenv("AI_PROVIDER", "openai")
    from app.core.config import get_settings

    get_settings.cache_clear()
    with pytest.raises(ServiceUnavailable):
        await _upload_pdf(assistant, "bill.pdf")
    assert assistant.list_documents() == []


@pytest.mark.asyncio
async def test_empty_upload_is_refused(assistant):
    with pytest.raises(ValueError):
        await assistant.upload_document(b"", filename="empty.png")


@pytest.mark.asyncio
async def test_documents_resolve_independently(assistant):
    provider = ScriptedProvider(
        {"a.pdf": RECEIPT, "b.pdf": NOT_A_RECEIPT, "c.pdf": TransportError("down")}
    )
    with patch(PATCH_PROVIDER, return_value=provider):
        ids = [await _upload_pdf(assistant, name) for name in ("a.pdf", "b.pdf", "c.pdf")]
        await assistant.wait_idle()

    statuses = [assistant.get_document(i).status for i in ids]
    assert statuses == [DocumentStatus.COMPLETED, DocumentStatus.REJECTED, DocumentStatus.COMPLETED]
    assert assistant.get_document(ids[2]).degraded


# ─── Ledger merge ──────────────────────────────────


@pytest.mark.asyncio
async def test_merge_appends_copies_with_fresh_ids(assistant):
    with patch(PATCH_PROVIDER, return_value=ScriptedProvider({"r.pdf": RECEIPT})):
        doc = await assistant.wait_for_document(await _upload_pdf(assistant, "r.pdf"))

    first = assistant.merge_into_ledger(doc.id)
    second = assistant.merge_into_ledger(doc.id)

    assert len(assistant.ledger) == 6
    ids = [t.id for t in assistant.ledger.snapshot()]
    assert len(set(ids)) == 6
    assert not set(ids) & {t.id for t in doc.extracted_transactions}
    assert [t.description for t in first] == [t.description for t in second]


@pytest.mark.asyncio
async def test_food_receipt_image_merges_into_ledger(assistant, png_bytes):
    provider = ScriptedProvider({"image": FOOD_RECEIPT})
    with patch(PATCH_PROVIDER, return_value=provider):
        doc_id = await assistant.upload_document(png_bytes, filename="dinner.png", content_type="image/png")
        doc = await assistant.wait_for_document(doc_id)

    assert doc.status == DocumentStatus.COMPLETED
    assert [(t.amount, t.category) for t in doc.extracted_transactions] == [(12.50, "food"), (3.00, "food")]

    merged = assistant.merge_into_ledger(doc_id)
    assert len(merged) == 2
    summary = summarize(assistant.ledger.snapshot())
    assert summary.total_expenses == pytest.approx(15.50)
    assert summary.category_totals == pytest.approx({"food": 15.50})


@pytest.mark.asyncio
async def test_merge_unknown_document(assistant):
    with pytest.raises(DocumentNotFound):
        assistant.merge_into_ledger("nope")


# ─── Delete ──────────────────────────────────


@pytest.mark.asyncio
async def test_delete_while_processing_discards_result(assistant):
    provider = BlockingProvider()
    with patch(PATCH_PROVIDER, return_value=provider):
        doc_id = await _upload_pdf(assistant, "slow.pdf")
        await asyncio.wait_for(provider.started.wait(), timeout=5)

        assistant.delete_document(doc_id)
        provider.release.set()
        await asyncio.sleep(0)
        await assistant.wait_idle()

    with pytest.raises(DocumentNotFound):
        assistant.get_document(doc_id)
    assert assistant.list_documents() == []
    assert len(assistant.ledger) == 0


@pytest.mark.asyncio
async def test_delete_clears_chat_selection(assistant):
    with patch(PATCH_PROVIDER, return_value=ScriptedProvider({"r.pdf": RECEIPT})):
        doc = await assistant.wait_for_document(await _upload_pdf(assistant, "r.pdf"))
    assistant.select_document(doc.id)
    assistant.delete_document(doc.id)

    assert assistant.selected_document_id is None
    with pytest.raises(DocumentNotFound):
        assistant.delete_document(doc.id)


# ─── Chat ──────────────────────────────────


@pytest.mark.asyncio
async def test_chat_uses_selected_document_and_ledger(assistant, png_bytes):
    provider = ScriptedProvider({"image": RECEIPT}, reply="The bread price is normal.")
    assistant.ledger.append([make_transaction(7, description="Cinema")])
    with patch(PATCH_PROVIDER, return_value=provider):
        doc_id = await assistant.upload_document(png_bytes, filename="r.png", content_type="image/png")
        await assistant.wait_for_document(doc_id)
        answer = await assistant.send_chat_message("Is the bread overpriced?", document_id=doc_id)

    assert answer.role == "assistant"
    assert answer.text == "The bread price is normal."
    assert answer.related_document_id == doc_id
    assert assistant.selected_document_id == doc_id

    messages = provider.calls[-1]
    contents = [m["content"] for m in messages if m["role"] == "system"]
    assert any("Cinema" in c for c in contents)
    assert any("Grocery receipt" in c for c in contents)
    assert messages[-1]["content"][1]["type"] == "image_url"

    transcript = assistant.transcript()
    assert [m.role for m in transcript] == ["user", "assistant"]
    assert transcript[0].text == "Is the bread overpriced?"


@pytest.mark.asyncio
async def test_chat_resends_history(assistant):
    provider = ScriptedProvider(reply="ok")
    with patch(PATCH_PROVIDER, return_value=provider):
        await assistant.send_chat_message("first")
        await assistant.send_chat_message("second")

    last = provider.calls[-1]
    assert [m["content"] for m in last[1:]] == ["first", "ok", "second"]


@pytest.mark.asyncio
async def test_chat_failure_uses_canned_reply(assistant):
    provider = ScriptedProvider(reply=TransportError("offline"))
    with patch(PATCH_PROVIDER, return_value=provider):
        answer = await assistant.send_chat_message("Why is this so expensive?")

    assert answer.text in FALLBACK_REPLIES
    assert len(assistant.transcript()) == 2


@pytest.mark.asyncio
async def test_chat_unconfigured_uses_canned_reply(assistant, monkeypatch):
    monkeypatch.setenv("AI_PROVIDER", "openai")
    from app.core.config import get_settings

    get_settings.cache_clear()
    answer = await assistant.send_chat_message("hello")
    assert answer.text in FALLBACK_REPLIES


@pytest.mark.asyncio
async def test_select_unknown_document(assistant):
    with pytest.raises(DocumentNotFound):
        assistant.select_document("missing")
    assistant.select_document(None)
    assert assistant.selected_document_id is None


# ─── Insights ──────────────────────────────────


@pytest.mark.asyncio
async def test_insights_over_ledger(assistant):
    provider = ScriptedProvider(insights='["Your food spending is rising"]')
    with patch(PATCH_PROVIDER, return_value=provider):
        assert await assistant.fetch_insights() == []
        assert provider.calls == []

        assistant.ledger.append([make_transaction(12)])
        assert await assistant.fetch_insights() == ["Your food spending is rising"]
        assert await assistant.fetch_insights([make_transaction(3)]) == ["Your food spending is rising"]
