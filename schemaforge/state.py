from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from schemaforge.json_tools.signature import signature
from schemaforge.schema.version_detector import SchemaDraft

ERROR_SEPARATOR = " \n"


class Decision(str, Enum):
    FIX = "FIX"
    REGENERATE = "REGENERATE"
    END = "END"

    @classmethod
    def parse(cls, value: object) -> Optional["Decision"]:
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


@dataclass(frozen=True)
class ValidationOutcome:
    ok: bool
    errors: Tuple[str, ...] = ()

    @classmethod
    def valid(cls) -> "ValidationOutcome":
        return cls(ok=True)

    @classmethod
    def invalid(cls, errors: Sequence[str]) -> "ValidationOutcome":
        if not errors:
            raise ValueError("An invalid outcome needs at least one error message.")
        return cls(ok=False, errors=tuple(errors))

    def display(self) -> str:
        if self.ok:
            return "OK"
        return ERROR_SEPARATOR.join(self.errors)

    def signature(self) -> str:
        return signature(self.errors)


@dataclass
class TraceEntry:
    round: int
    decision: Decision
    reasoning: str
    error_count: int
    validation_signature: str
    heuristic_signature: str

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["decision"] = self.decision.value
        return payload


@dataclass
class WorkflowState:
    user_intent: str
    raw_schema: str
    compact_schema: str = ""
    schema_version: Optional[SchemaDraft] = None
    generated_json: str = ""
    validation_result: Optional[ValidationOutcome] = None
    validation_signature: str = ""
    previous_validation_result: Optional[str] = None
    previous_validation_signature: Optional[str] = None
    heuristic_warnings: List[str] = field(default_factory=list)
    heuristic_signature: str = ""
    generation_plan: str = ""
    fix_plan: str = ""
    decision: Optional[Decision] = None
    reasoning: str = ""
    iteration_count: int = 0
    trace: List[TraceEntry] = field(default_factory=list)
    round_index: int = 0


@dataclass
class ConvergenceResult:
    generated_json: str
    outcome: ValidationOutcome
    trace: List[TraceEntry]
    status: str
    rounds: int
    schema_version: Optional[SchemaDraft]
    heuristic_warnings: List[str]
    state: WorkflowState

    @property
    def converged(self) -> bool:
        return self.status == "converged"
