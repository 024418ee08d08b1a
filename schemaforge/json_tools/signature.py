from __future__ import annotations

from typing import Iterable, Optional

SIGNATURE_SEPARATOR = "|"


def signature(findings: Optional[Iterable[str]]) -> str:
    """Order-independent digest of a set of findings; empty input gives ""."""
    if not findings:
        return ""
    return SIGNATURE_SEPARATOR.join(sorted(findings))
