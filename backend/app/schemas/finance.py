import uuid
import datetime as dt
from datetime import datetime, timezone
from enum import StrEnum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Category(StrEnum):
    FOOD = "food"
    TRANSPORTATION = "transportation"
    EDUCATION = "education"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    HEALTH = "health"
    UTILITIES = "utilities"
    RENT = "rent"
    INCOME = "income"
    OTHER = "other"


CATEGORY_VALUES: tuple[str, ...] = tuple(c.value for c in Category)

TransactionType = Literal["income", "expense"]


class DocumentStatus(StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


class DocumentKind(StrEnum):
    IMAGE = "image"
    PDF = "pdf"


class DocumentType(StrEnum):
    RECEIPT = "receipt"
    BILL = "bill"
    INVOICE = "invoice"
    STATEMENT = "statement"
    OTHER = "other"


# --- Transactions ---


class TransactionCreate(BaseModel):
    date: dt.date
    amount: float = Field(..., gt=0)
    # Free text: values outside ``Category`` are kept as given.
    category: str = Field(default=Category.OTHER.value, min_length=1, max_length=64)
    description: str = Field(default="", max_length=512)
    type: TransactionType = "expense"


class Transaction(TransactionCreate):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)

    def copy_with_new_id(self) -> "Transaction":
        return self.model_copy(update={"id": new_id()})


# --- Documents ---


class DocumentOut(BaseModel):
    id: str
    filename: Optional[str] = None
    content_type: str
    kind: DocumentKind
    uploaded_at: datetime
    status: DocumentStatus
    document_type: Optional[DocumentType] = None
    confidence: Optional[float] = None
    degraded: bool = False
    analysis: Optional[str] = None
    extracted_transactions: list[Transaction]


class DocumentListResponse(BaseModel):
    items: list[DocumentOut]


class UploadResponse(BaseModel):
    document_ids: list[str]


class DocumentEventOut(BaseModel):
    event: Literal["created", "completed", "rejected", "deleted"]
    document_id: str
    status: Optional[DocumentStatus] = None
    at: datetime


# --- Ledger ---


class LedgerResponse(BaseModel):
    items: list[Transaction]


class MergeResponse(BaseModel):
    document_id: str
    merged: list[Transaction]
    ledger_size: int


class LedgerSummary(BaseModel):
    total_income: float
    total_expenses: float
    net_income: float
    category_totals: dict[str, float]
    average_daily_spending: float
    transaction_count: int


class BasicInsight(BaseModel):
    kind: Literal["warning", "tip", "alert"]
    title: str
    message: str
    action: str


class LedgerSummaryResponse(BaseModel):
    summary: LedgerSummary
    insights: list[BasicInsight]
    # Best-effort; empty when the AI collaborator is unavailable.
    ai_insights: list[str] = Field(default_factory=list)


# --- Chat ---


ChatRole = Literal["user", "assistant"]


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: ChatRole
    text: str
    timestamp: datetime = Field(default_factory=utc_now)
    related_document_id: Optional[str] = None


class ChatMessageCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=4000)
    document_id: Optional[str] = None


class ChatTranscriptResponse(BaseModel):
    items: list[ChatMessage]
    selected_document_id: Optional[str] = None


class ChatSelectionRequest(BaseModel):
    document_id: Optional[str] = None


# --- Insights ---


class InsightsRequest(BaseModel):
    # When omitted, the current ledger is used.
    transactions: Optional[list[Transaction]] = None


class InsightsResponse(BaseModel):
    insights: list[str]
