from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional

from schemaforge.adapters.llm_base import LLMResponse
from schemaforge.state import ConvergenceResult, TraceEntry
from schemaforge.utils.io import write_json, write_text


def write_generated(path: Path, json_text: str) -> None:
    try:
        payload = json.loads(json_text)
    except ValueError:
        write_text(path, json_text)
        return
    write_json(path, payload)


def write_trace(path: Path, trace: List[TraceEntry]) -> None:
    write_json(path, [entry.to_dict() for entry in trace])


def usage_totals(responses: List[LLMResponse]) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for response in responses:
        for key, value in (response.usage or {}).items():
            if isinstance(value, int):
                totals[key] = totals.get(key, 0) + value
    return totals


def write_run_summary(
    path: Path,
    result: ConvergenceResult,
    mode: str,
    responses: Optional[List[LLMResponse]] = None,
) -> None:
    lines: List[str] = [
        "# Run Summary",
        "",
        f"- mode: {mode}",
        f"- status: {result.status}",
        f"- rounds: {result.rounds}",
        f"- schema_version: {result.schema_version.value if result.schema_version else 'unknown'}",
        f"- validation: {'OK' if result.outcome.ok else 'failed'}",
        f"- error_count: {len(result.outcome.errors)}",
        f"- placeholder_warnings: {len(result.heuristic_warnings)}",
    ]
    totals = usage_totals(responses or [])
    if totals:
        lines.append(
            "- token_usage: " + ", ".join(f"{key}={value}" for key, value in totals.items())
        )
    if result.trace:
        lines.extend(["", "## Decisions"])
        for entry in result.trace:
            lines.append(
                f"- round {entry.round}: {entry.decision.value} ({entry.error_count} errors) {entry.reasoning}"
            )
    if result.outcome.errors:
        lines.extend(["", "## Remaining Errors"])
        lines.extend([f"- {error}" for error in result.outcome.errors])
    if result.heuristic_warnings:
        lines.extend(["", "## Placeholder Warnings"])
        lines.extend([f"- {warning}" for warning in result.heuristic_warnings])
    write_text(path, "\n".join(lines) + "\n")
