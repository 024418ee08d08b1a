from __future__ import annotations

import itertools

import pytest

from schemaforge.collaborators import RouteReply
from schemaforge.pipeline_convergence import (
    RouteInput,
    count_errors,
    decide_route,
    needs_external_route,
)
from schemaforge.state import Decision, ValidationOutcome

FEW = ValidationOutcome.invalid(["$.a: bad", "$.b: bad"])
MANY = ValidationOutcome.invalid(["$.a: bad", "$.b: bad", "$.c: bad", "$.d: bad"])


def test_count_errors_uses_display_separator():
    assert count_errors("OK") == 0
    assert count_errors("") == 0
    assert count_errors(None) == 0
    assert count_errors("one \ntwo \n \nthree") == 3
    assert count_errors(MANY.display()) == 4


@pytest.mark.parametrize("previous", [None, Decision.FIX, Decision.REGENERATE, Decision.END])
def test_end_on_valid_regardless_of_history(previous):
    routed = decide_route(
        RouteInput(
            outcome=ValidationOutcome.valid(),
            previous_decision=previous,
            previous_validation_result="OK",
            previous_validation_signature="",
            iteration_count=7,
        ),
        RouteReply(decision="REGENERATE", reason="ignored"),
    )
    assert routed.decision is Decision.END
    assert routed.reasoning == "Validation passed. Finishing."


def test_stagnation_by_signature_forces_regenerate():
    outcome = ValidationOutcome.invalid(["B", "A"])
    routed = decide_route(
        RouteInput(
            outcome=outcome,
            previous_decision=Decision.FIX,
            previous_validation_result="different text",
            previous_validation_signature="A|B",
            iteration_count=3,
        )
    )
    assert outcome.signature() == "A|B"
    assert routed.decision is Decision.REGENERATE
    assert routed.iteration_count == 0
    assert routed.reasoning == "No progress after FIX; switching to REGENERATE."


def test_stagnation_by_display_text():
    routed = decide_route(
        RouteInput(
            outcome=MANY,
            previous_decision=Decision.FIX,
            previous_validation_result=MANY.display(),
            iteration_count=1,
        )
    )
    assert routed.decision is Decision.REGENERATE


def test_same_errors_after_regenerate_are_not_stagnation():
    route_input = RouteInput(
        outcome=FEW,
        previous_decision=Decision.REGENERATE,
        previous_validation_result=FEW.display(),
        previous_validation_signature=FEW.signature(),
        iteration_count=0,
    )
    routed = decide_route(route_input)
    assert routed.decision is Decision.FIX
    assert routed.iteration_count == 1


def test_few_errors_fix_counts_consecutive_attempts():
    after_fix = decide_route(
        RouteInput(outcome=FEW, previous_decision=Decision.FIX, iteration_count=2)
    )
    assert after_fix.decision is Decision.FIX
    assert after_fix.iteration_count == 3
    assert after_fix.reasoning == "Few errors (2) -> FIX."

    after_regenerate = decide_route(
        RouteInput(outcome=FEW, previous_decision=Decision.REGENERATE, iteration_count=5)
    )
    assert after_regenerate.iteration_count == 1


def test_many_errors_need_external_route():
    assert needs_external_route(RouteInput(outcome=MANY))
    assert not needs_external_route(RouteInput(outcome=FEW))
    assert not needs_external_route(RouteInput(outcome=ValidationOutcome.valid()))


def test_external_regenerate_resets_iteration():
    routed = decide_route(
        RouteInput(outcome=MANY, previous_decision=Decision.FIX, iteration_count=2),
        RouteReply(decision="regenerate", reason="structure mismatch"),
    )
    assert routed.decision is Decision.REGENERATE
    assert routed.iteration_count == 0
    assert routed.reasoning == "structure mismatch"


def test_external_fix_increments_iteration():
    routed = decide_route(
        RouteInput(outcome=MANY, previous_decision=Decision.FIX, iteration_count=2),
        RouteReply(decision="FIX", reason="local"),
    )
    assert routed.decision is Decision.FIX
    assert routed.iteration_count == 3


@pytest.mark.parametrize("answer", ["MAYBE", "", "END"])
def test_unknown_or_premature_end_defaults_to_fix(answer):
    routed = decide_route(RouteInput(outcome=MANY), RouteReply(decision=answer, reason="?"))
    assert routed.decision is Decision.FIX
    assert routed.iteration_count == 1


def test_premature_end_is_explained_in_reasoning():
    routed = decide_route(RouteInput(outcome=MANY), RouteReply(decision="END", reason="looks done"))
    assert routed.decision is Decision.FIX
    assert routed.reasoning == "END requested with open errors, default FIX. looks done"


def test_missing_reply_defaults_to_fix():
    routed = decide_route(RouteInput(outcome=MANY))
    assert routed.decision is Decision.FIX


def test_router_is_total():
    outcomes = [ValidationOutcome.valid(), FEW, MANY]
    previous = [None, Decision.FIX, Decision.REGENERATE, Decision.END]
    displays = [None, "OK", FEW.display(), MANY.display()]
    signatures = [None, "", FEW.signature(), MANY.signature()]
    replies = [None, RouteReply("FIX", ""), RouteReply("REGENERATE", ""), RouteReply("junk", "")]
    for outcome, prev, display, sig, reply in itertools.product(
        outcomes, previous, displays, signatures, replies
    ):
        routed = decide_route(
            RouteInput(
                outcome=outcome,
                previous_decision=prev,
                previous_validation_result=display,
                previous_validation_signature=sig,
                iteration_count=1,
            ),
            reply,
        )
        assert routed.decision in set(Decision)
        assert routed.iteration_count >= 0
