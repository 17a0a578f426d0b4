"""Provider factory — returns the configured provider or refuses up front."""

from __future__ import annotations

import logging

from app.core.config import get_settings

from ..errors import ServiceUnavailable
from .base import BaseProvider, Message, ProviderResult
from .mock import MockProvider

logger = logging.getLogger(__name__)

__all__ = ["get_provider", "BaseProvider", "Message", "ProviderResult", "MockProvider"]


def get_provider(provider_name: str) -> BaseProvider:
    """Return a provider instance for *provider_name*.

    Raises ``ServiceUnavailable`` when the provider is not allowlisted, is
    unknown, or has no API key. ``mock`` is only used when asked for by name.
    """
    settings = get_settings()
    name = provider_name.lower().strip()

    if name not in settings.ai_allowed_providers:
        logger.warning("Provider %r not in allowlist", name)
        raise ServiceUnavailable(f"AI provider {name!r} is not allowed")

    if name == "mock":
        return MockProvider()

    if name == "openai":
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY not set – AI features are disabled")
            raise ServiceUnavailable("OpenAI API key not configured")
        from .openai import OpenAIProvider

        return OpenAIProvider(api_key=settings.openai_api_key, base_url=settings.openai_base_url)

    logger.warning("Unknown provider %r", name)
    raise ServiceUnavailable(f"Unknown AI provider {name!r}")
