from __future__ import annotations

import json

import pytest

from conftest import ScriptedCollaborators
from schemaforge.collaborators import RouteReply
from schemaforge.config import EngineConfig
from schemaforge.errors import CollaboratorError, FatalSchemaError
from schemaforge.pipeline_convergence import ConvergencePipeline
from schemaforge.schema.version_detector import SchemaDraft
from schemaforge.state import Decision

NAME_SCHEMA = '{"type":"object","required":["name"],"properties":{"name":{"type":"string"}}}'


def _decisions(result):
    return [entry.decision for entry in result.trace]


def test_valid_first_generation_ends_immediately():
    fake = ScriptedCollaborators(['{"name":"Alice"}'])
    result = ConvergencePipeline(fake).run("one person", NAME_SCHEMA)
    assert result.status == "converged"
    assert result.outcome.ok
    assert _decisions(result) == [Decision.END]
    assert json.loads(result.generated_json) == {"name": "Alice"}
    assert result.schema_version is SchemaDraft.DRAFT_4
    assert "route" not in fake.calls


def test_fix_round_repairs_document(person_schema):
    fake = ScriptedCollaborators(['{"name":"Marta"}'], fixes=['{"name":"Marta","age":34}'])
    result = ConvergencePipeline(fake).run("adult", person_schema)
    assert _decisions(result) == [Decision.FIX, Decision.END]
    assert result.rounds == 2
    assert result.state.iteration_count == 1
    assert fake.calls.count("apply_fix") == 1


def test_unchanged_errors_after_fix_escalate_to_regenerate(person_schema):
    fake = ScriptedCollaborators(
        ['{"name":"Marta"}', '{"name":"Marta","age":34}'],
        fixes=['{"name":5}', '{"name":5}'],
    )
    result = ConvergencePipeline(fake).run("adult", person_schema)
    # 1 error -> FIX -> 2 other errors -> FIX -> same 2 errors -> REGENERATE -> valid
    assert _decisions(result) == [Decision.FIX, Decision.FIX, Decision.REGENERATE, Decision.END]
    regenerate = result.trace[2]
    assert regenerate.reasoning == "No progress after FIX; switching to REGENERATE."
    assert result.status == "converged"
    assert fake.calls.count("plan_generation") == 2


def test_normalization_runs_before_validation():
    fake = ScriptedCollaborators(['```json\n{"name":"\u00A0Marta\u2013Keller "}\n```'])
    result = ConvergencePipeline(fake).run("one person", NAME_SCHEMA)
    assert result.outcome.ok
    assert result.generated_json == '{"name":"Marta-Keller"}'


def test_placeholder_warnings_are_recorded():
    fake = ScriptedCollaborators(['{"name":"John Doe"}'])
    result = ConvergencePipeline(fake).run("one person", NAME_SCHEMA)
    assert result.heuristic_warnings == ["$/name: suspicious placeholder-like value: 'John Doe'"]
    assert result.state.heuristic_signature == result.heuristic_warnings[0]


def test_malformed_generation_is_routed_to_fix():
    fake = ScriptedCollaborators(["Sorry, here is the data: {name"], fixes=['{"name":"Marta"}'])
    result = ConvergencePipeline(fake).run("one person", NAME_SCHEMA)
    assert _decisions(result) == [Decision.FIX, Decision.END]
    assert result.trace[0].error_count == 1
    assert result.state.heuristic_warnings == []


def test_many_errors_consult_route_collaborator():
    schema = json.dumps(
        {
            "type": "object",
            "required": ["a", "b", "c"],
            "properties": {k: {"type": "string"} for k in "abc"},
        }
    )
    fake = ScriptedCollaborators(
        ["{}", '{"a":"x1","b":"y2","c":"z3"}'],
        routes=[RouteReply("REGENERATE", "nothing usable")],
    )
    result = ConvergencePipeline(fake).run("triplet", schema)
    assert _decisions(result) == [Decision.REGENERATE, Decision.END]
    assert result.trace[0].reasoning == "nothing usable"
    assert result.trace[0].error_count == 3


def test_route_failure_defaults_to_fix():
    schema = json.dumps(
        {"type": "object", "required": ["a", "b", "c"], "properties": {}}
    )
    fake = ScriptedCollaborators(["{}"], fixes=['{"a":1,"b":2,"c":3}'])
    fake.fail.add("route")
    result = ConvergencePipeline(fake).run("triplet", schema)
    assert _decisions(result) == [Decision.FIX, Decision.END]


def test_planning_and_validation_failures_fall_back_locally(person_schema):
    fake = ScriptedCollaborators(['{"name":"Marta"}'], fixes=['{"name":"Marta","age":34}'])
    fake.fail.update({"plan_generation", "plan_fix", "validate_json_against_schema"})
    result = ConvergencePipeline(fake).run("adult", person_schema)
    assert result.status == "converged"
    assert "- name: string" in result.state.generation_plan
    assert "$: 'age' is a required property" in result.state.fix_plan


def test_generation_failure_aborts_with_collaborator_error():
    fake = ScriptedCollaborators(['{"name":"Marta"}'])
    fake.fail.add("generate")
    with pytest.raises(CollaboratorError) as info:
        ConvergencePipeline(fake).run("one person", NAME_SCHEMA)
    assert info.value.stage == "generate"


def test_invalid_schema_is_fatal():
    fake = ScriptedCollaborators(['{"name":"Marta"}'])
    with pytest.raises(FatalSchemaError):
        ConvergencePipeline(fake).run("one person", '{"type": 5}')
    assert "generate" not in fake.calls


def test_round_cap_returns_exhausted(person_schema):
    fake = ScriptedCollaborators(['{"name":"Marta"}'], fixes=['{"name":"Marta","age":-1}'])
    config = EngineConfig(max_rounds=3)
    result = ConvergencePipeline(fake, config).run("adult", person_schema)
    assert result.status == "exhausted"
    assert result.rounds == 3
    assert len(result.trace) == 3
    assert not result.outcome.ok


def test_raw_responses_are_written(tmp_path, person_schema):
    fake = ScriptedCollaborators(['{"name":"Marta"}'], fixes=['{"name":"Marta","age":34}'])
    ConvergencePipeline(fake, raw_dir=tmp_path).run("adult", person_schema)
    names = sorted(path.name for path in tmp_path.iterdir())
    assert names == [
        "round00_generate_raw.txt",
        "round00_plan_generation_raw.txt",
        "round01_apply_fix_raw.txt",
        "round01_plan_fix_raw.txt",
    ]


def test_for_mode_mock_converges(person_schema):
    result = ConvergencePipeline.for_mode("mock").run("adult in Leipzig", person_schema)
    assert result.converged
    assert json.loads(result.generated_json) == {"name": "Nordwind", "age": 1}


def test_deeply_nested_output_is_routed_to_fix():
    fake = ScriptedCollaborators(["[" * 5000 + "]" * 5000], fixes=['{"name":"Marta"}'])
    result = ConvergencePipeline(fake).run("one person", NAME_SCHEMA)
    assert _decisions(result) == [Decision.FIX, Decision.END]
    assert result.trace[0].error_count == 1
    assert result.state.heuristic_warnings == []
    assert json.loads(result.generated_json) == {"name": "Marta"}
