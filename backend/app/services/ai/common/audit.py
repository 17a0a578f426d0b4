"""AI audit — one structured log record per AI run."""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from app.core.config import get_settings

from .providers.base import Message, ProviderResult

logger = logging.getLogger("app.ai.audit")

# Scope-dependent audit actions. Falls back to "AI_RUN" for unknown scopes.
SCOPE_ACTIONS: dict[str, str] = {
    "extract": "AI_DOCUMENT_EXTRACTED",
    "chat": "AI_CHAT_REPLIED",
    "insights": "AI_INSIGHTS_GENERATED",
}


def _prompt_text(messages: list[Message]) -> str:
    """Serialise *messages* for hashing, replacing inline image data by its size."""
    parts: list[str] = []
    for message in messages:
        content = message.get("content")
        if isinstance(content, list):
            for part in content:
                if part.get("type") == "text":
                    parts.append(part.get("text", ""))
                else:
                    parts.append(f"<{part.get('type')}:{len(json.dumps(part))}>")
        else:
            parts.append(str(content or ""))
    return "\n".join(parts)


def build_audit_metadata(
    *,
    scope: str,
    provider_result: ProviderResult,
    messages: list[Message],
    extra_meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the metadata dict recorded for one AI run.

    PII: prompt text is always hashed; raw text is only included when
    ``AI_DEBUG_STORE_RAW=true``.
    """
    settings = get_settings()
    prompt_text = _prompt_text(messages)

    metadata: dict[str, Any] = {
        "action": SCOPE_ACTIONS.get(scope, "AI_RUN"),
        "scope": scope,
        "provider": provider_result.provider,
        "model": provider_result.model,
        "prompt_tokens": provider_result.prompt_tokens,
        "completion_tokens": provider_result.completion_tokens,
        "latency_ms": provider_result.latency_ms,
        "prompt_hash": hashlib.sha256(prompt_text.encode()).hexdigest(),
        "response_hash": hashlib.sha256(provider_result.raw_text.encode()).hexdigest(),
    }

    if settings.ai_debug_store_raw:
        metadata["prompt_raw"] = prompt_text
        metadata["response_raw"] = provider_result.raw_text

    if extra_meta:
        metadata.update(extra_meta)
    return metadata


def log_ai_run(
    *,
    scope: str,
    provider_result: ProviderResult,
    messages: list[Message],
    extra_meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Log an audit entry for one AI run and return its metadata."""
    metadata = build_audit_metadata(
        scope=scope,
        provider_result=provider_result,
        messages=messages,
        extra_meta=extra_meta,
    )
    logger.info("%s %s", metadata["action"], json.dumps(metadata, default=str, sort_keys=True))
    return metadata
