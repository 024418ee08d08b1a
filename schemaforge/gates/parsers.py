from __future__ import annotations

import json
import re
from typing import Any, Iterator, Optional

FENCE = "```"
_OPENING_FENCE = re.compile(r"^```[A-Za-z0-9_+-]*[ \t]*\r?\n?")
_CLOSING_FENCE = re.compile(r"\r?\n?```$")
_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", flags=re.DOTALL | re.IGNORECASE)

_decoder = json.JSONDecoder()


def strip_fences(raw: Optional[str]) -> Optional[str]:
    """Unwraps a response that is a single markdown code block."""
    if raw is None:
        return None
    text = raw.strip()
    if text.startswith(FENCE) and text.endswith(FENCE) and len(text) >= 2 * len(FENCE):
        text = _OPENING_FENCE.sub("", text, count=1)
        text = _CLOSING_FENCE.sub("", text, count=1)
        return text.strip()
    return text


def _candidates(text: str) -> Iterator[str]:
    yield text
    unwrapped = strip_fences(text) or ""
    yield unwrapped
    blocks = _FENCED_BLOCK.findall(text)
    if blocks:
        yield "\n".join(blocks)
    for match in re.finditer(r"[\[{]", unwrapped):
        yield unwrapped[match.start():]


def extract_json(raw_text: str) -> Any:
    for candidate in _candidates(raw_text):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    for candidate in _candidates(raw_text):
        try:
            parsed, _ = _decoder.raw_decode(candidate.lstrip())
            return parsed
        except json.JSONDecodeError:
            continue

    snippet = raw_text.strip().replace("\n", " ")
    snippet = (snippet[:200] + "...") if len(snippet) > 200 else snippet
    raise ValueError(f"No JSON object found in response. Snippet: {snippet}")
