"""Receipt chat — assembles context for one chat exchange and decodes the reply.

Stateless: continuity across turns comes only from the caller resending the
earlier turns in ``history``.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence

from app.core.config import get_settings
from app.schemas.finance import Transaction

from ..common import router as ai_router
from ..common.audit import log_ai_run
from ..common.errors import MalformedResponse
from ..common.providers.base import Message
from .contracts import FALLBACK_REPLIES, ChatDocumentContext, ChatReply, ChatTurn

logger = logging.getLogger(__name__)

CHAT_SYSTEM_PROMPT = (
    "You are a helpful financial assistant specializing in explaining bills, receipts, "
    "and transactions to students.\n"
    "You can help with:\n"
    "- Explaining charges and fees\n"
    "- Verifying if prices are reasonable\n"
    "- Breaking down complex bills\n"
    "- Suggesting better spending categories\n"
    "- Identifying potential errors or fraud\n\n"
    "Be friendly, educational, and focus on helping students understand their "
    "finances better."
)


def format_ledger_line(t: Transaction) -> str:
    sign = "+" if t.type == "income" else "-"
    return f"{t.date.isoformat()}: {sign}${t.amount:.2f} - {t.description} ({t.category})"


def summarize_ledger(transactions: Sequence[Transaction], limit: int) -> str:
    """One line per transaction for the *limit* most recent ones, oldest first."""
    if limit <= 0:
        return ""
    window = list(transactions)[-limit:]
    return "\n".join(format_ledger_line(t) for t in window)


def build_chat_messages(
    message: str,
    *,
    active_document: ChatDocumentContext | None = None,
    ledger_window: Sequence[Transaction] | None = None,
    history: Sequence[ChatTurn] | None = None,
) -> list[Message]:
    """Layer system context, resent history and the new user turn, in that order."""
    settings = get_settings()
    messages: list[Message] = [{"role": "system", "content": CHAT_SYSTEM_PROMPT}]

    if ledger_window:
        summary = summarize_ledger(ledger_window, settings.ai_chat_history_limit)
        if summary:
            messages.append(
                {
                    "role": "system",
                    "content": (
                        "Here is the user's recent transaction history for context:\n"
                        f"{summary}\n\n"
                        "Use this information to provide personalized insights and answer "
                        "questions about their spending patterns, budgets, and financial habits."
                    ),
                }
            )

    if active_document and active_document.analysis:
        messages.append(
            {
                "role": "system",
                "content": f"Context about the current receipt/bill: {active_document.analysis}",
            }
        )

    if history and settings.ai_chat_max_turns > 0:
        for turn in list(history)[-settings.ai_chat_max_turns :]:
            messages.append({"role": turn.role, "content": turn.text})

    if active_document and active_document.image_ref:
        messages.append(
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": message},
                    {"type": "image_url", "image_url": {"url": active_document.image_ref}},
                ],
            }
        )
    else:
        messages.append({"role": "user", "content": message})

    return messages


async def chat(
    message: str,
    *,
    active_document: ChatDocumentContext | None = None,
    ledger_window: Sequence[Transaction] | None = None,
    history: Sequence[ChatTurn] | None = None,
    override_provider: str | None = None,
) -> ChatReply:
    """Ask the collaborator about *message*.

    Raises ``ServiceUnavailable``, ``TransportError`` or ``MalformedResponse``;
    callers substitute :func:`fallback_reply` rather than surfacing them.
    """
    config = ai_router.resolve("chat", override_provider=override_provider)
    messages = build_chat_messages(
        message,
        active_document=active_document,
        ledger_window=ledger_window,
        history=history,
    )

    result = await config.provider.generate(
        messages,
        model=config.model,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout_seconds=config.timeout_seconds,
    )
    text = result.raw_text.strip()
    if not text:
        raise MalformedResponse("Empty chat reply")

    log_ai_run(
        scope="chat",
        provider_result=result,
        messages=messages,
        extra_meta={
            "document_id": active_document.document_id if active_document else None,
            "ledger_lines": min(len(ledger_window or ()), get_settings().ai_chat_history_limit),
            "history_turns": len(history or ()),
        },
    )
    # Suggestions are not requested from the model yet.
    return ChatReply(message=text, suggestions=[])


def fallback_reply(rng: random.Random | None = None) -> str:
    """One of the canned replies used when the chat collaborator fails."""
    return (rng or random).choice(FALLBACK_REPLIES)
