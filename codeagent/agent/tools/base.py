"""Capability contract every tool satisfies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from codeagent.errors import ToolExecutionError
from codeagent.session.models import ToolOutcome

_JSON_TYPES: dict[str, type | tuple[type, ...]] = {
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
    "array": list,
    "object": dict,
}


def _type_matches(value: Any, expected: str) -> bool:
    if expected in ("integer", "number") and isinstance(value, bool):
        return False
    return isinstance(value, _JSON_TYPES[expected])


def _child(path: str, key: str | int) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else key


def _bounds(value: Any, schema: dict[str, Any], label: str) -> list[str]:
    problems = []
    if isinstance(value, str):
        if len(value) < schema.get("minLength", 0):
            problems.append(f"{label} must be at least {schema['minLength']} chars")
        if "maxLength" in schema and len(value) > schema["maxLength"]:
            problems.append(f"{label} must be at most {schema['maxLength']} chars")
    elif isinstance(value, (int, float)):
        if "minimum" in schema and value < schema["minimum"]:
            problems.append(f"{label} must be >= {schema['minimum']}")
        if "maximum" in schema and value > schema["maximum"]:
            problems.append(f"{label} must be <= {schema['maximum']}")
    return problems


def schema_errors(value: Any, schema: dict[str, Any], path: str = "") -> list[str]:
    """Check ``value`` against the JSON-schema subset tools declare.

    Supports ``type``, ``enum``, string length, numeric bounds, ``required``,
    nested ``properties`` and array ``items``. Returns human-readable problems,
    empty when the value conforms.
    """
    label = path or "parameter"
    expected = schema.get("type")
    if expected in _JSON_TYPES and not _type_matches(value, expected):
        return [f"{label} should be {expected}"]

    problems: list[str] = []
    if "enum" in schema and value not in schema["enum"]:
        problems.append(f"{label} must be one of {schema['enum']}")
    problems.extend(_bounds(value, schema, label))

    if expected == "object":
        properties = schema.get("properties", {})
        problems.extend(
            f"missing required {_child(path, key)}" for key in schema.get("required", []) if key not in value
        )
        for key, item in value.items():
            if key in properties:
                problems.extend(schema_errors(item, properties[key], _child(path, key)))
    elif expected == "array" and "items" in schema:
        for index, item in enumerate(value):
            problems.extend(schema_errors(item, schema["items"], _child(path, index)))
    return problems


class Tool(ABC):
    """
    Base tool contract.

    Subclasses provide ``name``, ``description``, ``input_schema`` and an
    async ``execute``. Callers go through ``invoke``, which validates the
    arguments against the schema and always returns a ToolOutcome.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        pass

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolOutcome:
        pass

    async def invoke(self, arguments: dict[str, Any]) -> ToolOutcome:
        errors = self.validate_params(arguments)
        if errors:
            return ToolOutcome.failure(
                f"Invalid parameters for tool '{self.name}': " + "; ".join(errors),
                detail="InvalidParameters",
            )
        try:
            return await self.execute(**arguments)
        except ToolExecutionError as e:
            return ToolOutcome.from_error(e)
        except Exception as e:
            return ToolOutcome.from_error(ToolExecutionError(self.name, str(e)))

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        schema = self.input_schema or {}
        if schema.get("type", "object") != "object":
            raise ValueError(f"Schema must be object type, got {schema.get('type')!r}")
        return schema_errors(params, {**schema, "type": "object"})

    def to_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }
