"""Mock provider — deterministic responses for local runs and tests."""

from __future__ import annotations

import json
import time
from typing import Any

from .base import BaseProvider, Message, ProviderResult

MOCK_EXTRACTION = {
    "isValidDocument": True,
    "documentType": "receipt",
    "transactions": [
        {
            "date": "",
            "amount": 4.2,
            "category": "food",
            "description": "Mock receipt item",
            "type": "expense",
        }
    ],
    "analysis": "Mock extraction: one line item.",
    "confidence": 1.0,
}

MOCK_REPLY = "This is a mock reply. Configure OPENAI_API_KEY for real answers."


class MockProvider(BaseProvider):
    name = "mock"

    def __init__(self, raw_text: str | None = None) -> None:
        self._raw_text = raw_text

    async def generate(
        self,
        messages: list[Message],
        *,
        model: str = "",
        temperature: float = 0.3,
        max_tokens: int = 1024,
        timeout_seconds: float = 8.0,
        response_format: dict[str, Any] | None = None,
    ) -> ProviderResult:
        t0 = time.monotonic()
        if self._raw_text is not None:
            text = self._raw_text
        elif response_format:
            text = json.dumps(MOCK_EXTRACTION)
        else:
            text = MOCK_REPLY
        elapsed = (time.monotonic() - t0) * 1000
        return ProviderResult(
            raw_text=text,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=sum(len(str(m.get("content", "")).split()) for m in messages),
            completion_tokens=len(text.split()),
            latency_ms=round(elapsed, 2),
        )
