from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from schemaforge.collaborators import (
    Collaborators,
    LlmCollaborators,
    RouteReply,
    local_fix_plan,
    local_generation_plan,
)
from schemaforge.config import EngineConfig
from schemaforge.errors import CollaboratorError, FatalSchemaError
from schemaforge.gates.parsers import strip_fences
from schemaforge.json_tools.normalizer import normalize_tree
from schemaforge.json_tools.placeholders import PlaceholderAnalyzer
from schemaforge.schema.validation import (
    compact_and_validate_schema,
    compact_json,
    validate_json_against_schema,
)
from schemaforge.state import (
    ERROR_SEPARATOR,
    ConvergenceResult,
    Decision,
    TraceEntry,
    ValidationOutcome,
    WorkflowState,
)
from schemaforge.utils.io import write_text
from schemaforge.utils.time import elapsed_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteInput:
    outcome: ValidationOutcome
    previous_decision: Optional[Decision] = None
    previous_validation_result: Optional[str] = None
    previous_validation_signature: Optional[str] = None
    iteration_count: int = 0
    fix_error_threshold: int = 2

    @property
    def display(self) -> str:
        return self.outcome.display()

    @property
    def signature(self) -> str:
        return self.outcome.signature()

    @property
    def fix_attempts(self) -> int:
        # Only consecutive FIX rounds count.
        if self.previous_decision is not Decision.FIX:
            return 0
        return self.iteration_count


@dataclass(frozen=True)
class RouteDecision:
    decision: Decision
    reasoning: str
    iteration_count: int
    error_count: int


def count_errors(display: Optional[str]) -> int:
    if display is None or not display.strip() or display.strip().upper() == "OK":
        return 0
    return sum(1 for part in display.split(ERROR_SEPARATOR) if part.strip())


def is_stagnant(route_input: RouteInput) -> bool:
    if route_input.previous_decision is not Decision.FIX:
        return False
    if route_input.previous_validation_result == route_input.display:
        return True
    previous = route_input.previous_validation_signature
    current = route_input.signature
    return bool(previous) and bool(current) and previous == current


def needs_external_route(route_input: RouteInput) -> bool:
    if route_input.outcome.ok or is_stagnant(route_input):
        return False
    return count_errors(route_input.display) > route_input.fix_error_threshold


def decide_route(route_input: RouteInput, reply: Optional[RouteReply] = None) -> RouteDecision:
    """Picks the next transition from the current outcome and the previous round.

    ``reply`` is the routing collaborator's answer and is only consulted when
    the error count is above the local FIX threshold. A missing or unknown
    answer falls back to FIX. END is only reached for a valid outcome: a
    routed END while errors remain is treated as FIX.
    """
    error_count = count_errors(route_input.display)
    if route_input.outcome.ok:
        return RouteDecision(
            Decision.END, "Validation passed. Finishing.", route_input.iteration_count, 0
        )

    fix_attempts = route_input.fix_attempts
    if is_stagnant(route_input):
        return RouteDecision(
            Decision.REGENERATE,
            "No progress after FIX; switching to REGENERATE.",
            0,
            error_count,
        )

    if error_count <= route_input.fix_error_threshold:
        return RouteDecision(
            Decision.FIX, f"Few errors ({error_count}) -> FIX.", fix_attempts + 1, error_count
        )

    if reply is None:
        return RouteDecision(
            Decision.FIX, "No routing reply, default FIX.", fix_attempts + 1, error_count
        )

    decision = Decision.parse(reply.decision)
    reasoning = reply.reason
    if decision is None:
        decision = Decision.FIX
        reasoning = f"Unknown routing decision {reply.decision!r}, default FIX. {reply.reason}".strip()
    elif decision is Decision.END:
        decision = Decision.FIX
        reasoning = f"END requested with open errors, default FIX. {reply.reason}".strip()

    if decision is Decision.FIX:
        return RouteDecision(decision, reasoning, fix_attempts + 1, error_count)
    return RouteDecision(decision, reasoning, 0, error_count)


class ConvergencePipeline:
    def __init__(
        self,
        collaborators: Collaborators,
        config: Optional[EngineConfig] = None,
        raw_dir: Optional[Path] = None,
    ) -> None:
        self.collaborators = collaborators
        self.config = config or EngineConfig()
        self.raw_dir = raw_dir
        self.analyzer = PlaceholderAnalyzer(min_monotonic_run=self.config.min_monotonic_run)

    @classmethod
    def for_mode(
        cls, mode: str, config: Optional[EngineConfig] = None, raw_dir: Optional[Path] = None
    ) -> "ConvergencePipeline":
        config = config or EngineConfig()
        return cls(LlmCollaborators(mode, config), config, raw_dir)

    def run(self, user_intent: str, raw_schema: str) -> ConvergenceResult:
        started = time.monotonic()
        state = WorkflowState(user_intent=user_intent, raw_schema=raw_schema)

        self._validate_schema(state)
        self._plan_generation(state)
        self._generate(state)
        self._normalize(state)
        self._validate_json(state)

        status = "exhausted"
        while state.round_index < self.config.max_rounds:
            state.round_index += 1
            self._reason_and_route(state)
            if state.decision is Decision.END:
                status = "converged"
                break
            if state.round_index >= self.config.max_rounds:
                break
            if state.decision is Decision.FIX:
                self._plan_fix(state)
                self._apply_fix(state)
            else:
                self._plan_generation(state)
                self._generate(state)
            self._normalize(state)
            self._validate_json(state)

        if status == "exhausted":
            logger.warning(
                "[engine] round cap %d reached without a valid document", self.config.max_rounds
            )
        logger.info(
            "[engine] status=%s rounds=%d duration_ms=%d",
            status,
            state.round_index,
            elapsed_ms(started),
        )
        return ConvergenceResult(
            generated_json=state.generated_json,
            outcome=state.validation_result or ValidationOutcome.invalid(["No validation ran."]),
            trace=list(state.trace),
            status=status,
            rounds=state.round_index,
            schema_version=state.schema_version,
            heuristic_warnings=list(state.heuristic_warnings),
            state=state,
        )

    def _validate_schema(self, state: WorkflowState) -> None:
        try:
            check = self.collaborators.compact_and_validate_schema(state.raw_schema)
        except Exception as exc:
            logger.warning("[schema] collaborator failed, checking locally: %s", exc)
            check = compact_and_validate_schema(state.raw_schema)
        if not check.ok:
            raise FatalSchemaError(check.error)
        state.compact_schema = check.compact_schema
        state.schema_version = check.version
        logger.info(
            "[schema] draft=%s", check.version.value if check.version else "unknown"
        )

    def _plan_generation(self, state: WorkflowState) -> None:
        try:
            plan = self.collaborators.plan_generation(state.user_intent, state.compact_schema)
        except Exception as exc:
            logger.warning("[plan_generation] collaborator failed, using local plan: %s", exc)
            plan = local_generation_plan(state.compact_schema)
        state.generation_plan = plan
        self._dump(state, "plan_generation", plan)

    def _generate(self, state: WorkflowState) -> None:
        try:
            text = self.collaborators.generate(
                state.user_intent, state.compact_schema, state.generation_plan
            )
        except CollaboratorError:
            raise
        except Exception as exc:
            raise CollaboratorError("generate", str(exc)) from exc
        state.generated_json = text
        self._dump(state, "generate", text)

    def _plan_fix(self, state: WorkflowState) -> None:
        errors = self._errors(state)
        try:
            plan = self.collaborators.plan_fix(errors, state.user_intent)
        except Exception as exc:
            logger.warning("[plan_fix] collaborator failed, using local plan: %s", exc)
            plan = local_fix_plan(errors)
        state.fix_plan = plan
        self._dump(state, "plan_fix", plan)

    def _apply_fix(self, state: WorkflowState) -> None:
        try:
            text = self.collaborators.apply_fix(
                self._errors(state), state.generated_json, state.compact_schema, state.fix_plan
            )
        except CollaboratorError:
            raise
        except Exception as exc:
            raise CollaboratorError("apply_fix", str(exc)) from exc
        state.generated_json = text
        self._dump(state, "apply_fix", text)

    def _normalize(self, state: WorkflowState) -> None:
        text = strip_fences(state.generated_json) or ""
        try:
            normalized = compact_json(normalize_tree(json.loads(text)))
            warnings, heuristic_signature = self.analyzer.analyze_with_signature(normalized)
        except (ValueError, RecursionError) as exc:
            logger.warning("[normalize] output is not JSON, handing to validation: %s", exc)
            state.generated_json = text
            state.heuristic_warnings = []
            state.heuristic_signature = ""
            return
        for warning in warnings:
            logger.info("[heuristics] %s", warning)
        state.generated_json = normalized
        state.heuristic_warnings = warnings
        state.heuristic_signature = heuristic_signature

    def _validate_json(self, state: WorkflowState) -> None:
        try:
            outcome = self.collaborators.validate_json_against_schema(
                state.generated_json, state.compact_schema
            )
        except Exception as exc:
            logger.warning("[validate] collaborator failed, validating locally: %s", exc)
            outcome = validate_json_against_schema(state.generated_json, state.compact_schema)
        state.validation_result = outcome
        state.validation_signature = outcome.signature()

    def _reason_and_route(self, state: WorkflowState) -> None:
        outcome = state.validation_result or ValidationOutcome.invalid(["No validation ran."])
        route_input = RouteInput(
            outcome=outcome,
            previous_decision=state.decision,
            previous_validation_result=state.previous_validation_result,
            previous_validation_signature=state.previous_validation_signature,
            iteration_count=state.iteration_count,
            fix_error_threshold=self.config.fix_error_threshold,
        )
        reply: Optional[RouteReply] = None
        if needs_external_route(route_input):
            try:
                reply = self.collaborators.route(
                    state.user_intent,
                    state.compact_schema,
                    state.generated_json,
                    route_input.display,
                    route_input.fix_attempts,
                )
            except Exception as exc:
                logger.warning("[route] collaborator failed, default FIX: %s", exc)
            if reply is not None:
                self._dump(state, "route", reply.raw_text or reply.decision)

        routed = decide_route(route_input, reply)
        state.decision = routed.decision
        state.reasoning = routed.reasoning
        state.iteration_count = routed.iteration_count
        state.previous_validation_result = route_input.display
        state.previous_validation_signature = route_input.signature
        state.trace.append(
            TraceEntry(
                round=state.round_index,
                decision=routed.decision,
                reasoning=routed.reasoning,
                error_count=routed.error_count,
                validation_signature=state.validation_signature,
                heuristic_signature=state.heuristic_signature,
            )
        )
        logger.info(
            "[route] round=%d decision=%s errors=%d reason=%s",
            state.round_index,
            routed.decision.value,
            routed.error_count,
            routed.reasoning,
        )

    def _errors(self, state: WorkflowState) -> str:
        if state.validation_result is None:
            return ""
        return state.validation_result.display()

    def _dump(self, state: WorkflowState, stage: str, text: str) -> None:
        if self.raw_dir is None:
            return
        write_text(self.raw_dir / f"round{state.round_index:02d}_{stage}_raw.txt", text)
