"""Document extract scope contracts — validity verdict plus every line item."""

from __future__ import annotations

import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from app.schemas.finance import DocumentType, Transaction

from ..common.errors import InvalidDocument

_VERDICT = TypeAdapter(bool)


class RawTransaction(BaseModel):
    """One line item as returned by the extraction service."""

    model_config = ConfigDict(extra="ignore")

    date: Optional[str] = None
    amount: float = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=64)
    description: str = Field(default="", max_length=512)
    type: Literal["income", "expense"]

    @field_validator("category", mode="before")
    @classmethod
    def normalise_category(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("amount")
    @classmethod
    def amount_has_whole_cents(cls, v: float) -> float:
        if round(v, 2) <= 0:
            raise ValueError("amount rounds to zero cents")
        return v

    def resolved_date(self, today: dt.date) -> dt.date:
        """The item's date, or *today* when the document's date is unclear."""
        if self.date:
            try:
                return dt.date.fromisoformat(self.date.strip()[:10])
            except ValueError:
                pass
        return today

    def to_transaction(self, today: dt.date) -> Transaction:
        return Transaction(
            date=self.resolved_date(today),
            amount=round(self.amount, 2),
            category=self.category,
            description=self.description.strip(),
            type=self.type,
        )


class ExtractionResult(BaseModel):
    """Structured output from financial document extraction.

    Wire names are camelCase; Python attributes are snake_case.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    is_valid_document: bool = Field(..., alias="isValidDocument")
    document_type: DocumentType = Field(..., alias="documentType")
    rejection_reason: Optional[str] = Field(default=None, alias="rejectionReason")
    transactions: list[RawTransaction] = Field(default_factory=list)
    analysis: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def rejected_documents_carry_no_transactions(cls, data: object) -> object:
        # A rejected verdict wins over anything else the model returned,
        # including line items that would not validate.
        if not isinstance(data, dict):
            return data
        verdict = data.get("isValidDocument", data.get("is_valid_document"))
        try:
            rejected = _VERDICT.validate_python(verdict) is False
        except ValidationError:
            return data
        if rejected:
            data = {**data, "transactions": []}
            if not data.get("documentType") and not data.get("document_type"):
                data["documentType"] = DocumentType.OTHER.value
        return data

    def to_transactions(self, today: dt.date | None = None) -> list[Transaction]:
        """Fresh ledger transactions for every extracted line item."""
        if not self.is_valid_document:
            return []
        today = today or dt.date.today()
        return [raw.to_transaction(today) for raw in self.transactions]

    def raise_for_rejection(self) -> None:
        """Raise ``InvalidDocument`` when the service classified the upload as invalid."""
        if not self.is_valid_document:
            raise InvalidDocument(self.rejection_reason or "Not a financial document")
