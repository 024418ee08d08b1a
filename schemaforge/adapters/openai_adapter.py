from __future__ import annotations

import logging
import os
import time
from typing import Dict, List, Optional

from openai import OpenAI
from openai import APIConnectionError, APITimeoutError, RateLimitError, InternalServerError

from .llm_base import LLMAdapter, LLMResponse

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 4


class OpenAIAdapter(LLMAdapter):
    def __init__(
        self,
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_tokens: int = 2048,
        api_key_env: str = "OPENAI_API_KEY",
        base_url: Optional[str] = None,
        name: str = "openai",
        json_mode_supported: bool = True,
    ) -> None:
        self.api_key = os.getenv(api_key_env)
        if not self.api_key:
            raise RuntimeError(f"{api_key_env} is not set.")
        self.client = OpenAI(api_key=self.api_key, base_url=base_url)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.name = name
        self.json_mode_supported = json_mode_supported

    @classmethod
    def openrouter(
        cls,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> "OpenAIAdapter":
        return cls(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key_env="OPENROUTER_API_KEY",
            base_url=base_url,
            name="openrouter",
            json_mode_supported=False,
        )

    def _messages(self, prompt: str, system: Optional[str]) -> List[Dict[str, str]]:
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages

    def complete(
        self, prompt: str, system: Optional[str] = None, json_mode: bool = False
    ) -> LLMResponse:
        extra: Dict[str, object] = {}
        if json_mode and self.json_mode_supported:
            extra["response_format"] = {"type": "json_object"}
        attempt = 0
        backoff = 1.0
        while True:
            attempt += 1
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=self._messages(prompt, system),
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    **extra,
                )
                content = response.choices[0].message.content
                if content is None:
                    raise RuntimeError(f"{self.name} returned empty content.")
                return LLMResponse(raw_text=content, usage=self._usage(response))
            except RateLimitError as exc:
                if _error_code(exc) == "insufficient_quota":
                    raise RuntimeError(
                        f"{self.name} API quota exceeded. Check billing for the account."
                    ) from exc
                if attempt >= MAX_ATTEMPTS:
                    raise
                logger.warning("[%s] rate limited, retry in %.1fs", self.name, backoff)
            except (APITimeoutError, APIConnectionError, InternalServerError) as exc:
                if attempt >= MAX_ATTEMPTS:
                    raise
                logger.warning("[%s] %s, retry in %.1fs", self.name, exc.__class__.__name__, backoff)
            time.sleep(backoff)
            backoff *= 2

    def _usage(self, response: object) -> Optional[Dict[str, Optional[int]]]:
        usage = getattr(response, "usage", None)
        if not usage:
            logger.info("[%s] usage not provided by SDK", self.name)
            return None
        payload = {
            "prompt_tokens": getattr(usage, "prompt_tokens", None),
            "completion_tokens": getattr(usage, "completion_tokens", None),
            "total_tokens": getattr(usage, "total_tokens", None),
        }
        logger.info(
            "[%s] model=%s prompt_tokens=%s completion_tokens=%s total_tokens=%s",
            self.name,
            self.model,
            payload["prompt_tokens"],
            payload["completion_tokens"],
            payload["total_tokens"],
        )
        return payload


def _error_code(exc: Exception) -> Optional[str]:
    code = getattr(exc, "code", None)
    if code:
        return code
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        nested = body.get("error")
        if isinstance(nested, dict):
            return nested.get("code")
        return body.get("code")
    return None
