"""Financial insights — best-effort observations over the recent ledger.

Never raises: every failure degrades to an empty list.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

from app.core.config import get_settings
from app.schemas.finance import Transaction

from ..common import router as ai_router
from ..common.audit import log_ai_run
from ..common.errors import AIServiceError, ServiceUnavailable
from ..common.json_tools import extract_json
from ..common.providers.base import Message

logger = logging.getLogger(__name__)

INSIGHTS_SYSTEM_PROMPT = (
    "You are a financial advisor for students. Analyze the transaction data and "
    "provide 3-5 actionable insights.\n"
    "Focus on spending patterns, budgeting tips, and financial health for students.\n"
    "Return insights as a JSON array of strings."
)


def insights_window(transactions: Sequence[Transaction]) -> list[Transaction]:
    """The most recent ``ai_insights_window`` transactions."""
    return list(transactions)[-get_settings().ai_insights_window :]


def build_insights_messages(window: Sequence[Transaction]) -> list[Message]:
    payload = json.dumps([t.model_dump(mode="json") for t in window])
    return [
        {"role": "system", "content": INSIGHTS_SYSTEM_PROMPT},
        {"role": "user", "content": f"Analyze these transactions and provide insights: {payload}"},
    ]


def decode_insights(raw_text: str) -> list[str]:
    """A JSON array of strings, or ``[]`` for anything else."""
    parsed = extract_json(raw_text)
    if isinstance(parsed, dict):
        # Some models wrap the array: {"insights": [...]}
        parsed = parsed.get("insights")
    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        return []
    return [item.strip() for item in parsed if item.strip()]


async def synthesize_insights(
    transactions: Sequence[Transaction],
    *,
    override_provider: str | None = None,
) -> list[str]:
    if not transactions:
        return []

    try:
        config = ai_router.resolve("insights", override_provider=override_provider)
    except ServiceUnavailable:
        logger.info("Insights disabled: no AI provider configured")
        return []

    messages = build_insights_messages(insights_window(transactions))
    try:
        result = await config.provider.generate(
            messages,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )
    except AIServiceError as exc:
        logger.warning("Insight generation failed: %s", exc)
        return []

    insights = decode_insights(result.raw_text)
    if not insights:
        logger.warning("Insight reply was not a list of strings: %s", result.raw_text[:200])

    log_ai_run(
        scope="insights",
        provider_result=result,
        messages=messages,
        extra_meta={"window": min(len(transactions), get_settings().ai_insights_window), "insights": len(insights)},
    )
    return insights
