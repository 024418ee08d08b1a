from __future__ import annotations

import logging
import os
import random
import time
from typing import List, Optional

from google import genai
from google.genai import types

from .llm_base import LLMAdapter, LLMResponse

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = ["503", "unavailable", "429", "too many", "timeout", "temporarily"]


class GeminiAdapter(LLMAdapter):
    name = "gemini"

    def __init__(
        self,
        model: str = "gemini-flash-latest",
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> None:
        api_key = os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY is not set.")

        self.client = genai.Client(api_key=api_key)
        self.model_candidates: List[str] = [model]
        for fallback in ("gemini-2.5-flash", "gemini-2.5-pro"):
            if fallback not in self.model_candidates:
                self.model_candidates.append(fallback)

        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_attempts = int(os.getenv("GEMINI_MAX_ATTEMPTS", "5"))
        self.base_delay = float(os.getenv("GEMINI_BASE_DELAY_SECONDS", "1.0"))

    def _is_transient(self, err: Exception) -> bool:
        msg = str(err).lower()
        return any(marker in msg for marker in _TRANSIENT_MARKERS)

    def complete(
        self, prompt: str, system: Optional[str] = None, json_mode: bool = False
    ) -> LLMResponse:
        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
            response_mime_type="application/json" if json_mode else None,
        )
        last_err: Exception | None = None

        for model in self.model_candidates:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    logger.info("[gemini] model=%s attempt=%d/%d", model, attempt, self.max_attempts)
                    response = self.client.models.generate_content(
                        model=model,
                        contents=prompt,
                        config=config,
                    )
                    text = getattr(response, "text", None)
                    if not text:
                        raise RuntimeError("Gemini returned empty content.")
                    return LLMResponse(raw_text=text, usage=self._usage(response))

                except Exception as e:
                    last_err = e
                    if not self._is_transient(e):
                        break

                    delay = self.base_delay * (2 ** (attempt - 1)) + random.random() * 0.5
                    logger.warning("[gemini] transient error: %s -> sleeping %.2fs", e, delay)
                    time.sleep(delay)

            logger.warning("[gemini] switching model after failures: %s", model)

        raise RuntimeError(
            "Gemini generate_content failed for all candidate models. "
            f"Last error: {last_err}"
        ) from last_err

    def _usage(self, response: object):
        meta = getattr(response, "usage_metadata", None)
        if meta is None:
            return None
        return {
            "prompt_tokens": getattr(meta, "prompt_token_count", None),
            "completion_tokens": getattr(meta, "candidates_token_count", None),
            "total_tokens": getattr(meta, "total_token_count", None),
        }
