"""The receipt pipeline the HTTP layer talks to.

Owns the document tracker, the ledger and the chat transcript for one
session. Each upload is processed by its own task; outbound extraction
calls are bounded by a semaphore. A failed extraction is absorbed by the
fallback, a rejected one is stored with its reason, and nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from app.core.config import get_settings
from app.core.image_processing import detect_kind, guess_content_type, prepare_image, to_data_url
from app.schemas.finance import ChatMessage, DocumentKind, Transaction

from .ai.common import router as ai_router
from .ai.common.errors import AIServiceError, InvalidDocument
from .ai.document_extract.fallback import FALLBACK_TRIGGERS, build_fallback_result
from .ai.document_extract.service import extract_document, extraction_timeout
from .ai.insights.service import synthesize_insights
from .ai.receipt_chat.contracts import ChatDocumentContext, ChatTurn
from .ai.receipt_chat.service import chat, fallback_reply
from .document_tracker import Document, DocumentTracker
from .ledger import Ledger

logger = logging.getLogger(__name__)


class ReceiptAssistant:
    def __init__(
        self,
        *,
        tracker: Optional[DocumentTracker] = None,
        ledger: Optional[Ledger] = None,
        max_concurrency: Optional[int] = None,
        override_provider: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        self.tracker = tracker or DocumentTracker()
        self.ledger = ledger or Ledger()
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.ai_extract_max_concurrency)
        self._override_provider = override_provider
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._document_refs: dict[str, str] = {}
        self._transcript: list[ChatMessage] = []
        self._selected_document_id: Optional[str] = None

    # --- documents ---

    def ensure_extraction_available(self) -> None:
        """Raise ``ServiceUnavailable`` when no extraction provider is configured."""
        ai_router.resolve("extract", override_provider=self._override_provider)

    async def upload_document(
        self,
        content: bytes,
        *,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> str:
        """Create a ``processing`` document and start its extraction.

        Returns immediately with the new document id; progress is observable
        through the tracker. Raises ``ServiceUnavailable`` before anything is
        created when extraction is not configured.
        """
        if not content:
            raise ValueError("Empty document")
        self.ensure_extraction_available()

        ct = guess_content_type(content_type, filename)
        doc = self.tracker.create(content, content_type=ct, kind=detect_kind(ct, filename), filename=filename)
        task = asyncio.create_task(self._process(doc.id), name=f"extract-{doc.id}")
        self._tasks[doc.id] = task
        task.add_done_callback(lambda t, doc_id=doc.id: self._on_task_done(doc_id, t))
        return doc.id

    def get_document(self, document_id: str) -> Document:
        return self.tracker.require(document_id)

    def list_documents(self) -> list[Document]:
        return self.tracker.documents()

    def delete_document(self, document_id: str) -> None:
        """Remove a document in any state; an in-flight extraction is cancelled."""
        self.tracker.require(document_id)
        task = self._tasks.pop(document_id, None)
        if task is not None and not task.done():
            task.cancel()
        self.tracker.delete(document_id)
        self._document_refs.pop(document_id, None)
        if self._selected_document_id == document_id:
            self._selected_document_id = None

    def merge_into_ledger(self, document_id: str) -> list[Transaction]:
        """Copy the document's transactions into the ledger.

        No status check and no dedup: merging twice appends twice. Each copy
        gets its own id.
        """
        doc = self.tracker.require(document_id)
        copies = [t.copy_with_new_id() for t in doc.extracted_transactions]
        self.ledger.append(copies)
        logger.info("Merged %d transaction(s) from document %s (%s)", len(copies), document_id, doc.status.value)
        return copies

    async def wait_for_document(self, document_id: str) -> Document:
        task = self._tasks.get(document_id)
        if task is not None:
            await asyncio.wait({task})
        return self.tracker.require(document_id)

    async def wait_idle(self) -> None:
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def _document_ref(self, doc: Document) -> str:
        ref = self._document_refs.get(doc.id)
        if ref is None:
            ref = await asyncio.to_thread(self._encode_document, doc)
            self._document_refs[doc.id] = ref
        return ref

    @staticmethod
    def _encode_document(doc: Document) -> str:
        if doc.kind == DocumentKind.IMAGE:
            prepared = prepare_image(
                doc.raw_content,
                doc.content_type,
                max_dimension=get_settings().image_max_dimension,
            )
            return to_data_url(prepared.content, prepared.content_type)
        return to_data_url(doc.raw_content, doc.content_type)

    async def _process(self, document_id: str) -> None:
        async with self._semaphore:
            doc = self.tracker.get(document_id)
            if doc is None:
                return
            try:
                ref = await self._document_ref(doc)
                result = await extract_document(
                    ref,
                    kind=doc.kind,
                    filename=doc.filename,
                    timeout_seconds=extraction_timeout(len(doc.raw_content)),
                    override_provider=self._override_provider,
                )
                result.raise_for_rejection()
                transactions = result.to_transactions()
            except InvalidDocument as exc:
                self.tracker.reject(
                    document_id,
                    exc.reason,
                    document_type=result.document_type,
                    confidence=result.confidence,
                )
                return
            except FALLBACK_TRIGGERS as exc:
                logger.warning("Extraction failed for document %s: %s; using fallback", document_id, exc)
                self._complete_with_fallback(doc)
                return
            except Exception:
                logger.exception("Unexpected extraction failure for document %s; using fallback", document_id)
                self._complete_with_fallback(doc)
                return

        self.tracker.complete(
            document_id,
            transactions,
            result.analysis,
            document_type=result.document_type,
            confidence=result.confidence,
        )

    def _on_task_done(self, document_id: str, task: asyncio.Task[None]) -> None:
        self._tasks.pop(document_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Extraction task for document %s crashed", document_id, exc_info=exc)

    def _complete_with_fallback(self, doc: Document) -> None:
        fallback = build_fallback_result(doc.kind)
        self.tracker.complete(doc.id, fallback.transactions, fallback.analysis, degraded=True)

    # --- chat ---

    @property
    def selected_document_id(self) -> Optional[str]:
        return self._selected_document_id

    def select_document(self, document_id: Optional[str]) -> None:
        if document_id is not None:
            self.tracker.require(document_id)
        self._selected_document_id = document_id

    def transcript(self) -> list[ChatMessage]:
        return list(self._transcript)

    async def send_chat_message(self, text: str, document_id: Optional[str] = None) -> ChatMessage:
        """Append the user's message, ask the assistant, append and return its reply.

        A failed call never ends the conversation: a canned reply is used.
        """
        if document_id is not None:
            self.select_document(document_id)
        doc = self.tracker.get(self._selected_document_id) if self._selected_document_id else None
        related_id = doc.id if doc else None

        history = [ChatTurn(role=m.role, text=m.text) for m in self._transcript]
        self._transcript.append(ChatMessage(role="user", text=text, related_document_id=related_id))

        try:
            context = await self._chat_context(doc) if doc else None
            reply = await chat(
                text,
                active_document=context,
                ledger_window=self.ledger.snapshot(),
                history=history,
                override_provider=self._override_provider,
            )
            answer = reply.message
        except AIServiceError as exc:
            logger.warning("Chat failed (%s); answering with a fallback reply", exc)
            answer = fallback_reply()

        message = ChatMessage(role="assistant", text=answer, related_document_id=related_id)
        self._transcript.append(message)
        return message

    async def _chat_context(self, doc: Document) -> ChatDocumentContext:
        image_ref = await self._document_ref(doc) if doc.kind == DocumentKind.IMAGE else None
        return ChatDocumentContext(document_id=doc.id, analysis=doc.analysis, image_ref=image_ref)

    # --- insights ---

    async def fetch_insights(self, ledger_snapshot: Optional[list[Transaction]] = None) -> list[str]:
        transactions = self.ledger.snapshot() if ledger_snapshot is None else ledger_snapshot
        return await synthesize_insights(transactions, override_provider=self._override_provider)
