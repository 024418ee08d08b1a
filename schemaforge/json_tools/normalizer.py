from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

# NBSP, figure space, narrow no-break space
UNICODE_SPACES = "\u00A0\u2007\u202F"

_DASHES = re.compile("[\u2010\u2011\u2012\u2013\u2014\u2015\u2212]")
_SPACES = re.compile(f"[{UNICODE_SPACES}]")
_FULL_WIDTH_DIGITS = {0xFF10 + offset: str(offset) for offset in range(10)}


def normalize_string(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    out = _trim_unicode(value)
    out = _DASHES.sub("-", out)
    out = _SPACES.sub(" ", out)
    return fold_full_width_digits(out)


def normalize_tree(node: Any) -> Any:
    """Returns a copy of ``node`` with every string leaf normalized."""
    if isinstance(node, str):
        return normalize_string(node)
    if isinstance(node, dict):
        normalized: Dict[str, Any] = {}
        for key, value in node.items():
            normalized[key] = normalize_tree(value)
        return normalized
    if isinstance(node, list):
        items: List[Any] = [normalize_tree(item) for item in node]
        return items
    return node


def fold_full_width_digits(value: str) -> str:
    if not value:
        return value
    return value.translate(_FULL_WIDTH_DIGITS)


def _trim_unicode(value: str) -> str:
    return value.strip().strip(UNICODE_SPACES).strip()
