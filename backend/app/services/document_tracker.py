"""Document lifecycle tracker.

Owns every uploaded document and its one-way state machine::

    processing --> completed
    processing --> rejected

Terminal states never transition again. Transitions are keyed by document id
and independent of each other; a transition addressed to an id that has
since been deleted is discarded. Every change is published as a
``DocumentEvent`` to subscriber queues.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from app.schemas.finance import (
    DocumentEventOut,
    DocumentKind,
    DocumentOut,
    DocumentStatus,
    DocumentType,
    Transaction,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100

EventName = Literal["created", "completed", "rejected", "deleted"]


class DocumentNotFound(KeyError):
    """No document with that id (never uploaded or already deleted)."""


class DocumentStateError(ValueError):
    """Transition requested from a terminal state."""


@dataclass
class Document:
    raw_content: bytes
    content_type: str
    kind: DocumentKind
    filename: Optional[str] = None
    id: str = field(default_factory=new_id)
    uploaded_at: datetime = field(default_factory=utc_now)
    status: DocumentStatus = DocumentStatus.PROCESSING
    extracted_transactions: list[Transaction] = field(default_factory=list)
    analysis: Optional[str] = None
    document_type: Optional[DocumentType] = None
    confidence: Optional[float] = None
    degraded: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status != DocumentStatus.PROCESSING

    def to_out(self) -> DocumentOut:
        return DocumentOut(
            id=self.id,
            filename=self.filename,
            content_type=self.content_type,
            kind=self.kind,
            uploaded_at=self.uploaded_at,
            status=self.status,
            document_type=self.document_type,
            confidence=self.confidence,
            degraded=self.degraded,
            analysis=self.analysis,
            extracted_transactions=list(self.extracted_transactions),
        )


@dataclass(frozen=True)
class DocumentEvent:
    event: EventName
    document_id: str
    status: Optional[DocumentStatus] = None
    at: datetime = field(default_factory=utc_now)

    def to_out(self) -> DocumentEventOut:
        return DocumentEventOut(event=self.event, document_id=self.document_id, status=self.status, at=self.at)


class DocumentTracker:
    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._subscribers: set[asyncio.Queue[DocumentEvent]] = set()

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._documents

    def __len__(self) -> int:
        return len(self._documents)

    # --- queries ---

    def get(self, document_id: str) -> Optional[Document]:
        return self._documents.get(document_id)

    def require(self, document_id: str) -> Document:
        doc = self._documents.get(document_id)
        if doc is None:
            raise DocumentNotFound(document_id)
        return doc

    def documents(self) -> list[Document]:
        """All documents in upload order."""
        return list(self._documents.values())

    # --- transitions ---

    def create(
        self,
        raw_content: bytes,
        *,
        content_type: str,
        kind: DocumentKind,
        filename: Optional[str] = None,
    ) -> Document:
        doc = Document(raw_content=raw_content, content_type=content_type, kind=kind, filename=filename)
        self._documents[doc.id] = doc
        logger.info("Document %s created (%s, %d bytes)", doc.id, kind.value, len(raw_content))
        self._publish(DocumentEvent("created", doc.id, doc.status))
        return doc

    def complete(
        self,
        document_id: str,
        transactions: list[Transaction],
        analysis: str,
        *,
        document_type: Optional[DocumentType] = None,
        confidence: Optional[float] = None,
        degraded: bool = False,
    ) -> Optional[Document]:
        doc = self._begin_transition(document_id)
        if doc is None:
            return None
        doc.extracted_transactions = list(transactions)
        doc.analysis = analysis
        doc.document_type = document_type
        doc.confidence = confidence
        doc.degraded = degraded
        doc.status = DocumentStatus.COMPLETED
        logger.info(
            "Document %s completed with %d transaction(s)%s",
            document_id,
            len(transactions),
            " (fallback)" if degraded else "",
        )
        self._publish(DocumentEvent("completed", document_id, doc.status))
        return doc

    def reject(
        self,
        document_id: str,
        reason: str,
        *,
        document_type: Optional[DocumentType] = None,
        confidence: Optional[float] = None,
    ) -> Optional[Document]:
        doc = self._begin_transition(document_id)
        if doc is None:
            return None
        doc.extracted_transactions = []
        doc.analysis = reason
        doc.document_type = document_type
        doc.confidence = confidence
        doc.status = DocumentStatus.REJECTED
        logger.info("Document %s rejected: %s", document_id, reason)
        self._publish(DocumentEvent("rejected", document_id, doc.status))
        return doc

    def delete(self, document_id: str) -> bool:
        doc = self._documents.pop(document_id, None)
        if doc is None:
            return False
        logger.info("Document %s deleted (was %s)", document_id, doc.status.value)
        self._publish(DocumentEvent("deleted", document_id, None))
        return True

    def _begin_transition(self, document_id: str) -> Optional[Document]:
        doc = self._documents.get(document_id)
        if doc is None:
            logger.info("Discarding late result for deleted document %s", document_id)
            return None
        if doc.is_terminal:
            raise DocumentStateError(f"Document {document_id} is already {doc.status.value}")
        return doc

    # --- events ---

    def subscribe(self) -> asyncio.Queue[DocumentEvent]:
        queue: asyncio.Queue[DocumentEvent] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[DocumentEvent]) -> None:
        self._subscribers.discard(queue)

    def _publish(self, event: DocumentEvent) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for slow subscriber", event.event)
