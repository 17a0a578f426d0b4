"""AI Router — resolves provider + per-scope model settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.config import Settings, get_settings

from .errors import ServiceUnavailable
from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)

SCOPES = ("extract", "chat", "insights")


@dataclass(frozen=True)
class ResolvedConfig:
    """Final resolved provider + model for one scope."""

    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


def _scope_params(scope: str, settings: Settings) -> tuple[str, float, int, float]:
    if scope == "extract":
        return (
            settings.ai_extract_model,
            settings.ai_extract_temperature,
            settings.ai_extract_max_tokens,
            settings.ai_extract_timeout_seconds,
        )
    if scope == "chat":
        return (
            settings.ai_chat_model,
            settings.ai_chat_temperature,
            settings.ai_chat_max_tokens,
            settings.ai_timeout_seconds,
        )
    if scope == "insights":
        return (
            settings.ai_insights_model,
            settings.ai_insights_temperature,
            settings.ai_insights_max_tokens,
            settings.ai_timeout_seconds,
        )
    raise ValueError(f"Unknown AI scope {scope!r}; valid: {SCOPES}")


def resolve(scope: str, *, override_provider: str | None = None) -> ResolvedConfig:
    """Resolve provider + model for a given *scope*.

    The provider comes from ``override_provider`` when given, otherwise from
    ``AI_PROVIDER``. Raises ``ServiceUnavailable`` (via ``get_provider``) when
    the provider cannot be used, so callers can disable a feature up front.
    """
    settings = get_settings()
    model, temperature, max_tokens, timeout = _scope_params(scope, settings)

    provider_name = (override_provider or settings.ai_provider or "openai").lower().strip()
    provider = get_provider(provider_name)

    return ResolvedConfig(
        provider=provider,
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout_seconds=timeout,
    )


def is_available(scope: str = "extract") -> bool:
    """Whether *scope* has a usable provider right now."""
    try:
        resolve(scope)
    except ServiceUnavailable:
        return False
    return True
