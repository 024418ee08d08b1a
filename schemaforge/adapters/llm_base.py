from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Protocol


@dataclass
class LLMResponse:
    raw_text: str
    usage: Optional[Dict[str, Optional[int]]] = None


class LLMAdapter(Protocol):
    name: str

    def complete(
        self, prompt: str, system: Optional[str] = None, json_mode: bool = False
    ) -> LLMResponse:
        raise NotImplementedError
