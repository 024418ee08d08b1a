from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, List, Optional, Type

from jsonschema import (
    Draft4Validator,
    Draft6Validator,
    Draft7Validator,
    Draft201909Validator,
    Draft202012Validator,
)

logger = logging.getLogger(__name__)


class SchemaDraft(Enum):
    DRAFT_2020_12 = "2020-12"
    DRAFT_2019_09 = "2019-09"
    DRAFT_7 = "draft-07"
    DRAFT_6 = "draft-06"
    DRAFT_4 = "draft-04"

    @property
    def validator_class(self) -> Type[Any]:
        return _VALIDATORS[self]


# Newest first.
KNOWN_DRAFTS: List[SchemaDraft] = [
    SchemaDraft.DRAFT_2020_12,
    SchemaDraft.DRAFT_2019_09,
    SchemaDraft.DRAFT_7,
    SchemaDraft.DRAFT_6,
    SchemaDraft.DRAFT_4,
]

CONSERVATIVE_DRAFT = SchemaDraft.DRAFT_4

_VALIDATORS = {
    SchemaDraft.DRAFT_2020_12: Draft202012Validator,
    SchemaDraft.DRAFT_2019_09: Draft201909Validator,
    SchemaDraft.DRAFT_7: Draft7Validator,
    SchemaDraft.DRAFT_6: Draft6Validator,
    SchemaDraft.DRAFT_4: Draft4Validator,
}

_META_MARKERS = [
    (("2020-12",), SchemaDraft.DRAFT_2020_12),
    (("2019-09",), SchemaDraft.DRAFT_2019_09),
    (("draft-07", "draft7"), SchemaDraft.DRAFT_7),
    (("draft-06", "draft6"), SchemaDraft.DRAFT_6),
    (("draft-04", "draft4"), SchemaDraft.DRAFT_4),
]

_DRAFT_2020_KEYWORDS = ('"prefixItems"',)
_DRAFT_2019_KEYWORDS = (
    '"$defs"',
    '"unevaluatedProperties"',
    '"unevaluatedItems"',
    '"dependentRequired"',
    '"dependentSchemas"',
)


class SchemaVersionDetector:
    def detect_version(self, schema_text: str) -> SchemaDraft:
        try:
            root = json.loads(schema_text)
            if isinstance(root, dict):
                meta = root.get("$schema")
                if isinstance(meta, str) and meta:
                    by_meta = version_from_schema_uri(meta)
                    if by_meta is not None:
                        return by_meta
            text = json.dumps(root, separators=(",", ":"), ensure_ascii=False)
            if any(token in text for token in _DRAFT_2020_KEYWORDS):
                return SchemaDraft.DRAFT_2020_12
            if any(token in text for token in _DRAFT_2019_KEYWORDS):
                return SchemaDraft.DRAFT_2019_09
        except Exception as exc:
            logger.debug("[schema] detection fell back to %s: %s", CONSERVATIVE_DRAFT.value, exc)
        return CONSERVATIVE_DRAFT

    def detect_candidates(self, schema_text: str) -> List[SchemaDraft]:
        primary = self.detect_version(schema_text)
        return [primary] + [draft for draft in KNOWN_DRAFTS if draft is not primary]

    def selected_version(self, schema_text: str) -> SchemaDraft:
        try:
            schema = json.loads(schema_text)
        except Exception:
            return CONSERVATIVE_DRAFT
        for draft in self.detect_candidates(schema_text):
            try:
                draft.validator_class.check_schema(schema)
                return draft
            except Exception as exc:
                logger.debug("[schema] %s rejected schema: %s", draft.value, exc)
        return CONSERVATIVE_DRAFT

    def validator_for(self, schema_text: str) -> Type[Any]:
        return self.selected_version(schema_text).validator_class


def version_from_schema_uri(schema_url: str) -> Optional[SchemaDraft]:
    lowered = schema_url.lower()
    for markers, draft in _META_MARKERS:
        if any(marker in lowered for marker in markers):
            return draft
    return None
