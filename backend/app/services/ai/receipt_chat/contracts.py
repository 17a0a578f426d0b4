"""Receipt chat scope contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.finance import ChatRole

FALLBACK_REPLIES: tuple[str, ...] = (
    "Based on your receipt, this appears to be a legitimate purchase. The pricing is "
    "consistent with current market rates for these items.",
    "I can see this is a grocery receipt. The total seems reasonable for the items "
    "listed. Would you like me to break down the categories?",
    "This bill shows your monthly utilities. The charges appear normal compared to "
    "seasonal averages. The breakdown includes base rate, usage, and taxes.",
    "Looking at this receipt, I notice a few items that might be categorized "
    "differently. Would you like me to suggest better categories for budgeting?",
    "The transaction amounts on this receipt are all within normal ranges. I can help "
    "you set up automatic categorization for similar purchases.",
)


class ChatReply(BaseModel):
    """Decoded reply from the chat collaborator."""

    message: str = Field(..., min_length=1)
    suggestions: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class ChatDocumentContext:
    """What the chat needs to know about the selected document."""

    document_id: str
    analysis: Optional[str] = None
    image_ref: Optional[str] = None


@dataclass(frozen=True)
class ChatTurn:
    """One earlier exchange resent for continuity."""

    role: ChatRole
    text: str
