from __future__ import annotations

import json
import re
import unicodedata
from typing import Any, List, Tuple

from schemaforge.errors import MalformedJsonError
from schemaforge.json_tools.normalizer import fold_full_width_digits
from schemaforge.json_tools.signature import signature

# [\W\d_] is "not a letter": a Unicode-aware stand-in for word boundaries.
_NON_LETTER = r"[\W\d_]"

WORD_PLACEHOLDERS = re.compile(
    rf"(?:^|{_NON_LETTER})"
    r"(test|example|sample|dummy|foobar|password|пароль|пример|тест)"
    rf"(?:{_NON_LETTER}|$)"
)

LOREM_IPSUM = re.compile(r"lorem\s+ipsum")

COMMON_NAMES = re.compile(
    rf"(?:^|{_NON_LETTER})"
    r"(john\s+doe|jane\s+doe|"
    r"ivan\s+ivanov|ivanov\s+ivan(?:\s+ivanovich)?|"
    r"иванов\s+иван(?:\s+иванович)?|петров\s+петр(?:\s+петрович)?)"
    rf"(?:{_NON_LETTER}|$)"
)

EMAIL_PLACEHOLDER = re.compile(
    r"\b(?:test|example|demo|sample|dummy|admin|user|foo|bar)@"
    r"(?:example\.(?:com|org|net)|test\.(?:com|org|net)|localhost)\b"
)

PHONE_PLACEHOLDER = re.compile(
    r"\b123[-\s]?456\b|\b000[-\s]?000\b|\b555[-\s]?01[0-9]{2}\b"
)

CANONICAL_NUM_RUNS = frozenset(
    ["1234", "012345", "12345", "123456", "987654321"]
    + [digit * 4 for digit in "0123456789"]
)

DIGIT_RUN = re.compile(r"[0-9]+")

PREVIEW_LIMIT = 120


class PlaceholderAnalyzer:
    """Flags values that look like synthetic test data.

    Each warning reads ``<path>: suspicious placeholder-like value: '<preview>'``
    where the path uses ``$`` for the root, ``/key`` for members and ``[i]``
    for array items.
    """

    def __init__(self, min_monotonic_run: int = 4) -> None:
        self.min_monotonic_run = min_monotonic_run

    def analyze(self, json_text: str) -> List[str]:
        warnings: List[str] = []
        try:
            self._walk(json.loads(json_text), "$", warnings)
        except (TypeError, ValueError, RecursionError) as exc:
            raise MalformedJsonError(f"Cannot analyze non-JSON input: {exc}") from exc
        return warnings

    def analyze_with_signature(self, json_text: str) -> Tuple[List[str], str]:
        warnings = self.analyze(json_text)
        return warnings, signature(warnings)

    def is_suspicious(self, value: str) -> bool:
        if value is None:
            return False
        norm = normalize_for_match(value)
        if not norm:
            return False
        for pattern in (
            WORD_PLACEHOLDERS,
            LOREM_IPSUM,
            COMMON_NAMES,
            EMAIL_PLACEHOLDER,
            PHONE_PLACEHOLDER,
        ):
            if pattern.search(norm):
                return True
        return self._looks_like_numeric_placeholder(norm)

    def _walk(self, node: Any, path: str, warnings: List[str]) -> None:
        if node is None or isinstance(node, bool):
            return
        if isinstance(node, (str, int, float)):
            raw = node if isinstance(node, str) else json.dumps(node)
            if self.is_suspicious(raw):
                warnings.append(f"{path}: suspicious placeholder-like value: '{preview(raw)}'")
            return
        if isinstance(node, dict):
            for key, value in node.items():
                self._walk(value, f"{path}/{key}", warnings)
            return
        if isinstance(node, list):
            for index, item in enumerate(node):
                self._walk(item, f"{path}[{index}]", warnings)

    def _looks_like_numeric_placeholder(self, norm: str) -> bool:
        for match in DIGIT_RUN.finditer(norm):
            run = match.group()
            if len(run) >= 3 and _all_same(run):
                return True
            if run in CANONICAL_NUM_RUNS:
                return True
            if len(run) >= self.min_monotonic_run and (
                _is_monotonic(run, ascending=True) or _is_monotonic(run, ascending=False)
            ):
                return True
        return False


def normalize_for_match(value: str) -> str:
    text = value.strip()
    if not text:
        return text
    text = unicodedata.normalize("NFKC", text)
    text = fold_full_width_digits(text)
    return text.lower()


def preview(value: str) -> str:
    flat = value.replace("\n", "\\n").replace("\t", "\\t")
    if len(flat) > PREVIEW_LIMIT:
        return flat[: PREVIEW_LIMIT - 3] + "..."
    return flat


def _all_same(digits: str) -> bool:
    return all(ch == digits[0] for ch in digits[1:])


def _is_monotonic(digits: str, ascending: bool) -> bool:
    step = 1 if ascending else -1
    for prev, cur in zip(digits, digits[1:]):
        if int(cur) - int(prev) != step:
            return False
    return True
