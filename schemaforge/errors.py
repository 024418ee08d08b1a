from __future__ import annotations


class SchemaForgeError(RuntimeError):
    pass


class FatalSchemaError(SchemaForgeError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Incorrect JSON Schema: {message}")
        self.detail = message


class CollaboratorError(SchemaForgeError):
    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage


class MalformedJsonError(SchemaForgeError, ValueError):
    pass
