from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .llm_base import LLMAdapter, LLMResponse

SCHEMA_LABEL = "JSON Schema:"

_FORMAT_SAMPLES: Dict[str, str] = {
    "email": "marta.keller@mailbox.org",
    "date": "2024-05-17",
    "date-time": "2024-05-17T10:42:00Z",
    "time": "10:42:00Z",
    "uri": "https://catalog.nordwind.io/items/48",
    "uuid": "3f2b1c9e-8a7d-4e6f-9b0a-2c4d6e8f1a3b",
    "ipv4": "192.168.31.7",
    "hostname": "catalog.nordwind.io",
}


@dataclass
class MockAdapter(LLMAdapter):
    """Offline stand-in that answers each stage prompt deterministically."""

    name: str = "mock"

    def complete(
        self, prompt: str, system: Optional[str] = None, json_mode: bool = False
    ) -> LLMResponse:
        return LLMResponse(raw_text=self._build_payload(prompt))

    def _build_payload(self, prompt: str) -> str:
        heading = prompt.lstrip().splitlines()[0] if prompt.strip() else ""
        if heading.startswith("# Routing request"):
            return json.dumps({"decision": "FIX", "reason": "Mock routing prefers local fixes."})
        if heading.startswith("# Generation plan request"):
            return "1) Required Fields: populate every required property with realistic values."
        if heading.startswith("# Fix plan request"):
            return "- Fix: rebuild the implicated fields from the schema constraints."
        if heading.startswith(("# JSON generation request", "# JSON fix request")):
            schema = _schema_from_prompt(prompt)
            return json.dumps(minimal_instance(schema), ensure_ascii=False)
        return "{}"


def _schema_from_prompt(prompt: str) -> Any:
    lines = prompt.splitlines()
    for index, line in enumerate(lines):
        if line.strip() == SCHEMA_LABEL and index + 1 < len(lines):
            try:
                return json.loads(lines[index + 1])
            except json.JSONDecodeError:
                return {}
    return {}


def minimal_instance(schema: Any, root: Any = None) -> Any:
    """Smallest value that satisfies the common keywords of ``schema``."""
    root = schema if root is None else root
    if not isinstance(schema, dict):
        return {}
    if "$ref" in schema:
        return minimal_instance(_resolve_ref(schema["$ref"], root), root)
    if "const" in schema:
        return schema["const"]
    if schema.get("enum"):
        return schema["enum"][0]
    if "default" in schema:
        return schema["default"]
    for keyword in ("oneOf", "anyOf"):
        if schema.get(keyword):
            return minimal_instance(schema[keyword][0], root)
    if schema.get("allOf"):
        return minimal_instance(_merge_all_of(schema), root)

    kind = _schema_type(schema)
    if kind == "object":
        return _object_instance(schema, root)
    if kind == "array":
        return _array_instance(schema, root)
    if kind == "string":
        return _string_instance(schema)
    if kind == "integer":
        return int(_number_instance(schema, 1))
    if kind == "number":
        return _number_instance(schema, 1.5)
    if kind == "boolean":
        return True
    if kind == "null":
        return None
    return {}


def _schema_type(schema: Dict[str, Any]) -> str:
    kind = schema.get("type")
    if isinstance(kind, list):
        non_null = [item for item in kind if item != "null"]
        kind = non_null[0] if non_null else "null"
    if kind:
        return kind
    if "properties" in schema or "required" in schema:
        return "object"
    if "items" in schema or "prefixItems" in schema:
        return "array"
    return "object"


def _object_instance(schema: Dict[str, Any], root: Any) -> Dict[str, Any]:
    properties = schema.get("properties") or {}
    instance: Dict[str, Any] = {}
    for name in schema.get("required") or []:
        instance[name] = minimal_instance(properties.get(name, {"type": "string"}), root)
    return instance


def _array_instance(schema: Dict[str, Any], root: Any) -> List[Any]:
    prefix = schema.get("prefixItems")
    items = schema.get("items")
    if isinstance(items, list):
        prefix, items = items, None
    values: List[Any] = [minimal_instance(item, root) for item in (prefix or [])]
    min_items = int(schema.get("minItems", 0))
    while len(values) < min_items:
        values.append(minimal_instance(items if isinstance(items, dict) else {"type": "string"}, root))
    return values


def _string_instance(schema: Dict[str, Any]) -> str:
    value = _FORMAT_SAMPLES.get(schema.get("format", ""), "Nordwind")
    min_length = int(schema.get("minLength", 0))
    if len(value) < min_length:
        value = value + "x" * (min_length - len(value))
    max_length = schema.get("maxLength")
    if max_length is not None:
        value = value[: int(max_length)]
    return value


def _number_instance(schema: Dict[str, Any], fallback: float) -> float:
    value = fallback
    minimum = schema.get("minimum")
    exclusive_minimum = schema.get("exclusiveMinimum")
    maximum = schema.get("maximum")
    if isinstance(minimum, (int, float)) and not isinstance(minimum, bool):
        value = max(value, minimum)
    if isinstance(exclusive_minimum, (int, float)) and not isinstance(exclusive_minimum, bool):
        value = max(value, exclusive_minimum + 1)
    if isinstance(maximum, (int, float)) and not isinstance(maximum, bool):
        value = min(value, maximum)
    return value


def _merge_all_of(schema: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {k: v for k, v in schema.items() if k != "allOf"}
    properties: Dict[str, Any] = dict(merged.get("properties") or {})
    required: List[str] = list(merged.get("required") or [])
    for part in schema["allOf"]:
        if not isinstance(part, dict):
            continue
        for key, value in part.items():
            if key == "properties":
                properties.update(value)
            elif key == "required":
                required.extend(name for name in value if name not in required)
            else:
                merged.setdefault(key, value)
    if properties:
        merged["properties"] = properties
    if required:
        merged["required"] = required
    return merged


def _resolve_ref(ref: str, root: Any) -> Any:
    if not ref.startswith("#"):
        return {}
    node = root
    for part in ref.lstrip("#").strip("/").split("/"):
        if not part:
            continue
        part = part.replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict) and part in node:
            node = node[part]
        else:
            return {}
    return node
