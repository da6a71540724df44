"""Best-effort introspection of a payment tool's declared parameters.

Two shapes are understood:

- typed shape: a pydantic model class (``args_schema``) or a ``{"_def": {"shape": ...}}``
  / ``{"shape": ...}`` mapping as exported by typed schema builders
- JSON Schema: a mapping with ``properties`` and optional ``required``

Anything else yields an empty :class:`ToolSchema`, and callers fall back to
name-based guesses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import BaseModel

_logger = logging.getLogger(__name__)

_SCHEMA_ATTRIBUTES = ("args_schema", "schema", "input_schema", "inputSchema")


@dataclass(frozen=True)
class ToolSchema:
    param_names: tuple[str, ...] = ()
    required: tuple[str, ...] = ()
    types: Mapping[str, str] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.param_names)

    def find(self, *candidates: str) -> str | None:
        """Return the schema's own spelling of the first candidate it declares."""
        lowered = {name.lower(): name for name in self.param_names}
        for candidate in candidates:
            match = lowered.get(candidate.lower())
            if match is not None:
                return match
        return None


def _from_model(model: type[BaseModel]) -> ToolSchema:
    names: list[str] = []
    required: list[str] = []
    types: dict[str, str] = {}
    for name, info in model.model_fields.items():
        key = info.alias or name
        names.append(key)
        if info.is_required():
            required.append(key)
        annotation = info.annotation
        types[key] = getattr(annotation, "__name__", None) or str(annotation)
    return ToolSchema(tuple(names), tuple(required), types)


def _from_shape(shape: Mapping[str, Any]) -> ToolSchema:
    types: dict[str, str] = {}
    for name, definition in shape.items():
        inner = definition.get("_def") if isinstance(definition, Mapping) else getattr(definition, "_def", None)
        type_name = inner.get("typeName") if isinstance(inner, Mapping) else None
        types[str(name)] = str(type_name or "unknown")
    return ToolSchema(tuple(str(name) for name in shape), (), types)


def _from_json_schema(schema: Mapping[str, Any]) -> ToolSchema:
    properties = schema.get("properties")
    if not isinstance(properties, Mapping):
        return ToolSchema()
    required = schema.get("required")
    types = {
        str(name): str(prop.get("type", "unknown")) if isinstance(prop, Mapping) else "unknown"
        for name, prop in properties.items()
    }
    return ToolSchema(
        tuple(str(name) for name in properties),
        tuple(str(r) for r in required) if isinstance(required, list) else (),
        types,
    )


def parse_schema(schema: Any) -> ToolSchema:
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return _from_model(schema)
    if isinstance(schema, BaseModel):
        return _from_model(type(schema))
    if isinstance(schema, Mapping):
        definition = schema.get("_def")
        if isinstance(definition, Mapping) and isinstance(definition.get("shape"), Mapping):
            return _from_shape(definition["shape"])
        if isinstance(schema.get("shape"), Mapping):
            return _from_shape(schema["shape"])
        if "properties" in schema:
            return _from_json_schema(schema)
    return ToolSchema()


def introspect_tool(tool: Any) -> ToolSchema:
    """Return the first non-empty schema found on the tool, or an empty one."""
    for attribute in _SCHEMA_ATTRIBUTES:
        if isinstance(tool, Mapping):
            raw = tool.get(attribute)
        else:
            raw = getattr(tool, attribute, None)
        if raw is None:
            continue
        try:
            parsed = parse_schema(raw)
        except (AttributeError, TypeError, ValueError) as exc:
            _logger.debug("schema attribute %s unreadable: %s", attribute, exc)
            continue
        if parsed:
            return parsed
    return ToolSchema()
