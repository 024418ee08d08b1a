from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from schemaforge.adapters.gemini_adapter import GeminiAdapter
from schemaforge.adapters.llm_base import LLMAdapter, LLMResponse
from schemaforge.adapters.mock_adapter import MockAdapter
from schemaforge.adapters.openai_adapter import OpenAIAdapter
from schemaforge.config import EngineConfig
from schemaforge.gates.parsers import extract_json
from schemaforge.schema.validation import (
    SchemaCheck,
    compact_and_validate_schema,
    validate_json_against_schema,
)
from schemaforge.state import Decision, ValidationOutcome
from schemaforge.utils.io import read_text

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
_TOKEN = re.compile(r"\{\{([A-Z_]+)\}\}")


@dataclass
class RouteReply:
    decision: str
    reason: str
    raw_text: str = ""


class Collaborators(Protocol):
    def compact_and_validate_schema(self, schema_text: str) -> SchemaCheck:
        ...

    def plan_generation(self, user_intent: str, schema: str) -> str:
        ...

    def generate(self, user_intent: str, schema: str, plan: str) -> str:
        ...

    def plan_fix(self, errors: str, user_intent: str) -> str:
        ...

    def apply_fix(self, errors: str, json_text: str, schema: str, plan: str) -> str:
        ...

    def route(
        self,
        user_intent: str,
        schema: str,
        json_text: str,
        errors: str,
        consecutive_fix_attempts: int,
    ) -> RouteReply:
        ...

    def validate_json_against_schema(self, json_text: str, schema: str) -> ValidationOutcome:
        ...


class LlmCollaborators:
    """Prompted collaborators; schema checks and validation stay local."""

    def __init__(
        self,
        mode: str,
        config: Optional[EngineConfig] = None,
        prompts_dir: Path = PROMPTS_DIR,
    ) -> None:
        self.mode = mode
        self.config = config or EngineConfig()
        self.prompts_dir = prompts_dir
        self._adapters: Dict[str, LLMAdapter] = {}
        self.responses: List[LLMResponse] = []

    def compact_and_validate_schema(self, schema_text: str) -> SchemaCheck:
        return compact_and_validate_schema(schema_text)

    def validate_json_against_schema(self, json_text: str, schema: str) -> ValidationOutcome:
        return validate_json_against_schema(json_text, schema)

    def plan_generation(self, user_intent: str, schema: str) -> str:
        return self._call("plan_generation", {"USER_INTENT": user_intent, "SCHEMA": schema})

    def generate(self, user_intent: str, schema: str, plan: str) -> str:
        return self._call(
            "generate",
            {"USER_INTENT": user_intent, "SCHEMA": schema, "PLAN": plan},
            json_mode=True,
        )

    def plan_fix(self, errors: str, user_intent: str) -> str:
        return self._call("plan_fix", {"ERRORS": errors, "USER_INTENT": user_intent})

    def apply_fix(self, errors: str, json_text: str, schema: str, plan: str) -> str:
        return self._call(
            "apply_fix",
            {"ERRORS": errors, "JSON": json_text, "SCHEMA": schema, "PLAN": plan},
            json_mode=True,
        )

    def route(
        self,
        user_intent: str,
        schema: str,
        json_text: str,
        errors: str,
        consecutive_fix_attempts: int,
    ) -> RouteReply:
        raw = self._call(
            "route",
            {
                "USER_INTENT": user_intent,
                "SCHEMA": schema,
                "JSON": json_text,
                "ERRORS": errors,
                "FIX_ATTEMPTS": str(consecutive_fix_attempts),
            },
            json_mode=True,
        )
        return parse_route_reply(raw)

    def _call(self, stage: str, values: Dict[str, str], json_mode: bool = False) -> str:
        adapter = self._adapter(stage)
        prompt = render_prompt(read_text(self.prompts_dir / f"{stage}.md"), values)
        system_path = self.prompts_dir / f"{stage}_system.md"
        system = read_text(system_path) if system_path.exists() else None
        logger.info("[%s] calling %s", stage, adapter.name)
        response = adapter.complete(prompt, system=system, json_mode=json_mode)
        self.responses.append(response)
        return response.raw_text

    def _adapter(self, stage: str) -> LLMAdapter:
        provider = "mock" if self.mode == "mock" else self.config.provider_for(stage)
        if provider not in self._adapters:
            self._adapters[provider] = self._build_adapter(provider)
        return self._adapters[provider]

    def _build_adapter(self, provider: str) -> LLMAdapter:
        cfg = self.config
        if provider == "mock":
            return MockAdapter()
        if provider == "gemini":
            return GeminiAdapter(
                model=cfg.gemini_model,
                temperature=cfg.temperature,
                max_tokens=cfg.max_output_tokens,
            )
        if provider == "openrouter":
            return OpenAIAdapter.openrouter(
                model=cfg.openrouter_model,
                base_url=cfg.openrouter_base_url,
                temperature=cfg.temperature,
                max_tokens=cfg.max_output_tokens,
            )
        return OpenAIAdapter(
            model=cfg.openai_model,
            temperature=cfg.temperature,
            max_tokens=cfg.max_output_tokens,
        )


def render_prompt(template: str, values: Dict[str, str]) -> str:
    return _TOKEN.sub(lambda match: values.get(match.group(1), match.group(0)), template)


def parse_route_reply(raw: str) -> RouteReply:
    try:
        payload = extract_json(raw)
    except ValueError:
        return RouteReply(
            decision=Decision.FIX.value,
            reason=f"Routing JSON parse failed, default FIX. Raw: {raw}",
            raw_text=raw,
        )
    if not isinstance(payload, dict):
        return RouteReply(
            decision=Decision.FIX.value,
            reason=f"Routing reply is not an object, default FIX. Raw: {raw}",
            raw_text=raw,
        )
    decision = payload.get("decision")
    reason = payload.get("reason")
    return RouteReply(
        decision=decision if isinstance(decision, str) else Decision.FIX.value,
        reason=reason if isinstance(reason, str) else "",
        raw_text=raw,
    )


def local_generation_plan(schema: str) -> str:
    try:
        root = json.loads(schema)
    except json.JSONDecodeError:
        root = {}
    required = root.get("required") if isinstance(root, dict) else None
    properties = root.get("properties") if isinstance(root, dict) else None
    lines = ["1) Required Fields:"]
    if isinstance(required, list) and required:
        for name in required:
            definition = properties.get(name, {}) if isinstance(properties, dict) else {}
            kind = definition.get("type", "any") if isinstance(definition, dict) else "any"
            lines.append(f"- {name}: {kind}")
    else:
        lines.append("- none declared at the top level")
    lines.append("2) Data Strategy: realistic, non-placeholder values that satisfy every constraint.")
    return "\n".join(lines)


def local_fix_plan(errors: str) -> str:
    lines = ["Fix each validation error with the smallest change:"]
    for part in errors.split(" \n"):
        if part.strip():
            lines.append(f"- {part.strip()}")
    return "\n".join(lines)
