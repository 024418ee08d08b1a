from __future__ import annotations

import json

from jsonschema import Draft202012Validator

from schemaforge.adapters.mock_adapter import minimal_instance
from schemaforge.collaborators import (
    LlmCollaborators,
    local_fix_plan,
    local_generation_plan,
    parse_route_reply,
    render_prompt,
)
from schemaforge.state import Decision


def test_render_prompt_replaces_known_tokens_only():
    rendered = render_prompt("A {{USER_INTENT}} B {{OTHER}}", {"USER_INTENT": "{{SCHEMA}}"})
    assert rendered == "A {{SCHEMA}} B {{OTHER}}"


def test_parse_route_reply_variants():
    reply = parse_route_reply('{"decision":"REGENERATE","reason":"structure"}')
    assert (reply.decision, reply.reason) == ("REGENERATE", "structure")

    broken = parse_route_reply("I think we should fix it")
    assert broken.decision == Decision.FIX.value
    assert broken.reason.startswith("Routing JSON parse failed, default FIX. Raw:")

    missing = parse_route_reply('{"reason":"no decision"}')
    assert missing.decision == Decision.FIX.value


def test_mock_collaborators_answer_every_stage():
    schema = json.dumps(
        {
            "type": "object",
            "required": ["email", "tags", "age"],
            "properties": {
                "email": {"type": "string", "format": "email"},
                "tags": {"type": "array", "minItems": 2, "items": {"type": "string"}},
                "age": {"type": "integer", "minimum": 18},
            },
        },
        separators=(",", ":"),
    )
    collaborators = LlmCollaborators("mock")
    assert collaborators.plan_generation("intent", schema)
    generated = json.loads(collaborators.generate("intent", schema, "plan"))
    assert generated["age"] == 18
    assert len(generated["tags"]) == 2
    assert collaborators.plan_fix("$.a: bad", "intent")
    fixed = json.loads(collaborators.apply_fix("$.a: bad", "{}", schema, "plan"))
    assert collaborators.validate_json_against_schema(json.dumps(fixed), schema).ok
    assert collaborators.route("intent", schema, "{}", "errors", 0).decision == "FIX"
    assert len(collaborators.responses) == 5


def test_minimal_instance_handles_refs_and_combinators():
    schema = {
        "$defs": {"code": {"type": "string", "minLength": 12, "maxLength": 12}},
        "type": "object",
        "required": ["code", "kind", "pair", "mixed"],
        "properties": {
            "code": {"$ref": "#/$defs/code"},
            "kind": {"enum": ["retail", "wholesale"]},
            "pair": {"type": "array", "prefixItems": [{"type": "number"}, {"type": "boolean"}]},
            "mixed": {"allOf": [{"required": ["x"]}, {"properties": {"x": {"const": 3}}}]},
        },
    }
    instance = minimal_instance(schema)
    assert Draft202012Validator(schema).is_valid(instance)
    assert instance["kind"] == "retail"
    assert instance["mixed"] == {"x": 3}


def test_local_plans():
    plan = local_generation_plan('{"type":"object","required":["name"],"properties":{"name":{"type":"string"}}}')
    assert "- name: string" in plan
    assert local_generation_plan("not json").endswith("satisfy every constraint.")
    assert local_fix_plan("$.a: bad \n$.b: worse").splitlines()[1:] == ["- $.a: bad", "- $.b: worse"]
