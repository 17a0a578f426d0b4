"""Abstract base for all AI providers."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any

# One chat-completions message: ``{"role": ..., "content": str | list[part]}``.
Message = dict[str, Any]


@dataclass(frozen=True)
class ProviderResult:
    """Immutable result returned by every provider."""

    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


class BaseProvider(abc.ABC):
    """Contract that every AI provider must implement.

    Implementations raise :class:`~app.services.ai.common.errors.TransportError`
    when the call does not complete and
    :class:`~app.services.ai.common.errors.MalformedResponse` when the envelope
    carries no usable text.
    """

    name: str = "base"

    @abc.abstractmethod
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
        """Send *messages* and return a ``ProviderResult``."""
