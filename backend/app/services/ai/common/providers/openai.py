"""OpenAI provider (chat completions, vision-capable)."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from ..errors import MalformedResponse, TransportError
from .base import BaseProvider, Message, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAIProvider(BaseProvider):
    name = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._transport = transport

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
        model = model or "gpt-4o"
        t0 = time.monotonic()

        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }
        if response_format:
            payload["response_format"] = response_format

        try:
            async with httpx.AsyncClient(timeout=timeout_seconds, transport=self._transport) as client:
                resp = await client.post(
                    f"{self._base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as exc:
            raise TransportError(f"OpenAI request timed out after {timeout_seconds}s") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("OpenAI API error %s: %s", status, exc.response.text[:500])
            raise TransportError(f"OpenAI API error: {status}", status_code=status) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"OpenAI request failed: {exc}") from exc
        except ValueError as exc:
            raise MalformedResponse("OpenAI returned a non-JSON body") from exc

        elapsed = (time.monotonic() - t0) * 1000
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse("OpenAI response has no message content") from exc
        if not text:
            raise MalformedResponse("No response content from OpenAI")
        usage = data.get("usage") or {}

        return ProviderResult(
            raw_text=text,
            model=data.get("model") or model,
            provider=self.name,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            latency_ms=round(elapsed, 2),
        )
