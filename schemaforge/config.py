from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, List

import yaml

STAGES: List[str] = ["plan_generation", "generate", "plan_fix", "apply_fix", "route"]
PROVIDERS: List[str] = ["openai", "openrouter", "gemini", "mock"]

# Planning and routing go to the reasoning model, generation and fixing to the generative one.
DEFAULT_STAGE_MODELS: Dict[str, str] = {
    "plan_generation": "openrouter",
    "generate": "openai",
    "plan_fix": "openrouter",
    "apply_fix": "openai",
    "route": "openrouter",
}

PROVIDER_KEYS: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "gemini": "GEMINI_API_KEY",
}


def _env(key: str, default: str) -> str:
    value = os.getenv(key)
    return value if value not in (None, "") else default


@dataclass
class EngineConfig:
    max_rounds: int = 10
    fix_error_threshold: int = 2
    min_monotonic_run: int = 4
    stage_models: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_STAGE_MODELS))
    openai_model: str = "gpt-4o-mini"
    openrouter_model: str = "deepseek/deepseek-r1"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    gemini_model: str = "gemini-flash-latest"
    temperature: float = 0.2
    max_output_tokens: int = 2048

    def __post_init__(self) -> None:
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be at least 1.")
        if self.fix_error_threshold < 0:
            raise ValueError("fix_error_threshold must be non-negative.")
        for stage, provider in self.stage_models.items():
            if stage not in STAGES:
                raise ValueError(f"Unknown stage in stage_models: {stage}")
            if provider not in PROVIDERS:
                raise ValueError(f"Unknown provider for stage {stage}: {provider}")

    def provider_for(self, stage: str) -> str:
        return self.stage_models.get(stage, DEFAULT_STAGE_MODELS[stage])

    def required_keys(self) -> List[str]:
        keys = {PROVIDER_KEYS[p] for p in self.stage_models.values() if p in PROVIDER_KEYS}
        return sorted(keys)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        stage_models = dict(DEFAULT_STAGE_MODELS)
        for stage in STAGES:
            stage_models[stage] = _env(f"SCHEMAFORGE_STAGE_{stage.upper()}", stage_models[stage])
        return cls(
            max_rounds=int(_env("SCHEMAFORGE_MAX_ROUNDS", "10")),
            fix_error_threshold=int(_env("SCHEMAFORGE_FIX_ERROR_THRESHOLD", "2")),
            min_monotonic_run=int(_env("SCHEMAFORGE_MIN_MONOTONIC_RUN", "4")),
            stage_models=stage_models,
            openai_model=_env("SCHEMAFORGE_OPENAI_MODEL", "gpt-4o-mini"),
            openrouter_model=_env("SCHEMAFORGE_OPENROUTER_MODEL", "deepseek/deepseek-r1"),
            openrouter_base_url=_env(
                "SCHEMAFORGE_OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"
            ),
            gemini_model=_env("SCHEMAFORGE_GEMINI_MODEL", "gemini-flash-latest"),
            temperature=float(_env("SCHEMAFORGE_TEMPERATURE", "0.2")),
            max_output_tokens=int(_env("SCHEMAFORGE_MAX_OUTPUT_TOKENS", "2048")),
        )

    def overlay_yaml(self, path: Path) -> "EngineConfig":
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")
        known = {f.name for f in fields(self)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(f"Unknown config keys in {path}: {', '.join(unknown)}")
        updates = dict(raw)
        if "stage_models" in updates:
            merged = dict(self.stage_models)
            merged.update(updates["stage_models"] or {})
            updates["stage_models"] = merged
        return replace(self, **updates)

    @classmethod
    def from_yaml(cls, path: Path) -> "EngineConfig":
        return cls().overlay_yaml(path)
