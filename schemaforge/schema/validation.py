from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from jsonschema import FormatChecker, SchemaError

from schemaforge.schema.version_detector import SchemaDraft, SchemaVersionDetector
from schemaforge.state import ValidationOutcome

logger = logging.getLogger(__name__)

_detector = SchemaVersionDetector()


@dataclass(frozen=True)
class SchemaCheck:
    ok: bool
    compact_schema: str = ""
    version: Optional[SchemaDraft] = None
    error: str = ""


def compact_json(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def compact_and_validate_schema(schema_text: str) -> SchemaCheck:
    try:
        schema = json.loads(schema_text)
    except (TypeError, ValueError) as exc:
        return SchemaCheck(ok=False, error=f"Schema is not valid JSON: {exc}")

    version = _detector.selected_version(schema_text)
    try:
        version.validator_class.check_schema(schema)
    except SchemaError as exc:
        return SchemaCheck(ok=False, version=version, error=exc.message)

    return SchemaCheck(ok=True, compact_schema=compact_json(schema), version=version)


def validate_json_against_schema(json_text: str, schema_text: str) -> ValidationOutcome:
    try:
        instance = json.loads(json_text)
        schema = json.loads(schema_text)
        validator_cls = _detector.validator_for(schema_text)
        validator = validator_cls(schema, format_checker=FormatChecker())
        messages = [
            f"{error_path(error.absolute_path)}: {error.message}"
            for error in validator.iter_errors(instance)
        ]
    except Exception as exc:
        logger.debug("[validate] validation aborted: %s", exc)
        return ValidationOutcome.invalid([str(exc) or exc.__class__.__name__])

    if not messages:
        return ValidationOutcome.valid()
    return ValidationOutcome.invalid(messages)


def error_path(parts: Iterable[Any]) -> str:
    path: List[str] = ["$"]
    for part in parts:
        if isinstance(part, int):
            path.append(f"[{part}]")
        else:
            path.append(f".{part}")
    return "".join(path)
