from __future__ import annotations

from typing import List, Optional

import pytest

from schemaforge.collaborators import RouteReply
from schemaforge.schema.validation import compact_and_validate_schema, validate_json_against_schema

PERSON_SCHEMA = (
    '{"type":"object","required":["name","age"],'
    '"properties":{"name":{"type":"string"},"age":{"type":"integer","minimum":0}},'
    '"additionalProperties":false}'
)


class ScriptedCollaborators:
    """Plays back canned generation and fix outputs; validation is real."""

    def __init__(
        self,
        generations: List[str],
        fixes: Optional[List[str]] = None,
        routes: Optional[List[RouteReply]] = None,
    ) -> None:
        self.generations = list(generations)
        self.fixes = list(fixes or [])
        self.routes = list(routes or [])
        self.calls: List[str] = []
        self.fail = set()

    def _record(self, stage: str) -> None:
        self.calls.append(stage)
        if stage in self.fail:
            raise RuntimeError(f"{stage} unavailable")

    def compact_and_validate_schema(self, schema_text):
        self._record("compact_and_validate_schema")
        return compact_and_validate_schema(schema_text)

    def plan_generation(self, user_intent, schema):
        self._record("plan_generation")
        return "plan"

    def generate(self, user_intent, schema, plan):
        self._record("generate")
        return self.generations.pop(0) if len(self.generations) > 1 else self.generations[0]

    def plan_fix(self, errors, user_intent):
        self._record("plan_fix")
        return "fix plan"

    def apply_fix(self, errors, json_text, schema, plan):
        self._record("apply_fix")
        return self.fixes.pop(0) if len(self.fixes) > 1 else self.fixes[0]

    def route(self, user_intent, schema, json_text, errors, consecutive_fix_attempts):
        self._record("route")
        return self.routes.pop(0) if self.routes else RouteReply("FIX", "scripted")

    def validate_json_against_schema(self, json_text, schema):
        self._record("validate_json_against_schema")
        return validate_json_against_schema(json_text, schema)


@pytest.fixture
def person_schema() -> str:
    return PERSON_SCHEMA
