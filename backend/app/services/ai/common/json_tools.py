"""JSON recovery from model replies.

Vision models often wrap the requested JSON in a markdown fence or a sentence
of prose. ``extract_json`` peels those off and returns the first parseable
object or array.
"""

from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[\w-]*\s*\n(?P<body>.*?)\n?```\s*$", re.DOTALL)
_CLOSERS = {"{": "}", "[": "]"}


def _strip_code_fence(text: str) -> str:
    match = _FENCE_RE.match(text)
    return match.group("body").strip() if match else text


def _loads(candidate: str) -> dict | list | None:
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    return parsed if isinstance(parsed, (dict, list)) else None


def _balanced_span(text: str, start: int) -> str | None:
    """The bracket-balanced substring opening at *start*, ignoring brackets in strings."""
    expected: list[str] = []
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            expected.append(_CLOSERS[ch])
        elif ch in "}]":
            if not expected or ch != expected.pop():
                return None
            if not expected:
                return text[start : i + 1]
    return None


def extract_json(text: str) -> dict | list | None:
    """Return the first JSON object or array found in *text*, or ``None``."""
    if not text or not text.strip():
        return None

    body = _strip_code_fence(text.strip())
    parsed = _loads(body)
    if parsed is not None:
        return parsed

    for i, ch in enumerate(body):
        if ch not in _CLOSERS:
            continue
        span = _balanced_span(body, i)
        if span is None:
            continue
        parsed = _loads(span)
        if parsed is not None:
            return parsed

    logger.debug("No JSON found in %d chars of model output", len(body))
    return None
