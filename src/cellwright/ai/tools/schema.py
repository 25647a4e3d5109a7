"""Declarative tool parameter schemas and the strict JSON-Schema compiler.

Tool parameters are described with small immutable node objects
(:class:`ObjectSchema`, :class:`ArraySchema`, :class:`EnumSchema` ...) and
lowered by :func:`compile_schema` into the strict dialect used for function
calling:

* every object property is listed in ``required`` and
  ``additionalProperties`` is ``false``;
* optional values become ``anyOf: [<inner>, {"type": "null"}]``;
* enumerations become ``{"type": "string", "enum": [...]}``;
* unions of primitive types collapse to a single ``type`` when homogeneous and
  otherwise become ``anyOf``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from ..errors import SchemaCompilationError

__all__ = [
    "SchemaNode",
    "StringSchema",
    "NumberSchema",
    "IntegerSchema",
    "BooleanSchema",
    "NullSchema",
    "EnumSchema",
    "ArraySchema",
    "ObjectSchema",
    "UnionSchema",
    "OptionalSchema",
    "compile_schema",
    "compile_parameters",
    "fill_defaults",
    "fill_missing_optionals",
]


class SchemaNode:
    """Marker base for declarative schema nodes."""

    description: str


@dataclass(slots=True, frozen=True)
class StringSchema(SchemaNode):
    description: str = ""


@dataclass(slots=True, frozen=True)
class NumberSchema(SchemaNode):
    description: str = ""


@dataclass(slots=True, frozen=True)
class IntegerSchema(SchemaNode):
    description: str = ""


@dataclass(slots=True, frozen=True)
class BooleanSchema(SchemaNode):
    description: str = ""


@dataclass(slots=True, frozen=True)
class NullSchema(SchemaNode):
    description: str = ""


@dataclass(slots=True, frozen=True)
class EnumSchema(SchemaNode):
    values: Sequence[str]
    description: str = ""


@dataclass(slots=True, frozen=True)
class ArraySchema(SchemaNode):
    items: SchemaNode
    description: str = ""


@dataclass(slots=True, frozen=True)
class ObjectSchema(SchemaNode):
    properties: Mapping[str, SchemaNode] = field(default_factory=dict)
    description: str = ""


@dataclass(slots=True, frozen=True)
class UnionSchema(SchemaNode):
    options: Sequence[SchemaNode]
    description: str = ""


@dataclass(slots=True, frozen=True)
class OptionalSchema(SchemaNode):
    """A value the model may leave ``null``; ``default`` is applied before dispatch."""

    inner: SchemaNode
    default: Any = None
    description: str = ""


_PRIMITIVE_TYPES: Mapping[type, str] = {
    StringSchema: "string",
    NumberSchema: "number",
    IntegerSchema: "integer",
    BooleanSchema: "boolean",
    NullSchema: "null",
}
_NULL = {"type": "null"}


def compile_parameters(node: SchemaNode) -> dict[str, Any]:
    """Compile a tool's parameter schema; the root must be an object."""

    if not isinstance(node, ObjectSchema):
        raise SchemaCompilationError("tool parameters must be an object schema")
    return compile_schema(node)


def compile_schema(node: SchemaNode, path: str = "$") -> dict[str, Any]:
    """Lower ``node`` into strict JSON Schema.

    Raises:
        SchemaCompilationError: For unsupported node types, empty enums or
            unions, and invalid property names.
    """

    compiled = _compile(node, path)
    if node.description:
        compiled["description"] = node.description
    return compiled


def _compile(node: SchemaNode, path: str) -> dict[str, Any]:
    primitive = _PRIMITIVE_TYPES.get(type(node))
    if primitive is not None:
        return {"type": primitive}
    if isinstance(node, EnumSchema):
        values = list(node.values)
        if not values:
            raise SchemaCompilationError("enum must declare at least one value", path=path)
        if not all(isinstance(value, str) for value in values):
            raise SchemaCompilationError("enum values must be strings", path=path)
        if len(set(values)) != len(values):
            raise SchemaCompilationError("enum values must be unique", path=path)
        return {"type": "string", "enum": values}
    if isinstance(node, ArraySchema):
        return {"type": "array", "items": compile_schema(node.items, f"{path}[]")}
    if isinstance(node, ObjectSchema):
        properties: dict[str, Any] = {}
        for name, child in node.properties.items():
            if not isinstance(name, str) or not name:
                raise SchemaCompilationError(f"invalid property name {name!r}", path=path)
            properties[name] = compile_schema(child, f"{path}.{name}")
        return {
            "type": "object",
            "properties": properties,
            "required": list(properties),
            "additionalProperties": False,
        }
    if isinstance(node, OptionalSchema):
        return _nullable(compile_schema(node.inner, path))
    if isinstance(node, UnionSchema):
        return _compile_union(node, path)
    raise SchemaCompilationError(f"unsupported schema node {type(node).__name__}", path=path)


def _compile_union(node: UnionSchema, path: str) -> dict[str, Any]:
    options = list(node.options)
    if not options:
        raise SchemaCompilationError("union must declare at least one option", path=path)
    if all(type(option) in _PRIMITIVE_TYPES for option in options):
        types = [_PRIMITIVE_TYPES[type(option)] for option in options]
        has_null = "null" in types
        distinct = list(dict.fromkeys(t for t in types if t != "null"))
        if not distinct:
            return dict(_NULL)
        if len(distinct) == 1:
            single = {"type": distinct[0]}
            return {"anyOf": [single, dict(_NULL)]} if has_null else single
    return {
        "anyOf": [compile_schema(option, f"{path}|{index}") for index, option in enumerate(options)]
    }


def _nullable(compiled: dict[str, Any]) -> dict[str, Any]:
    if compiled == _NULL:
        return compiled
    branches = compiled.get("anyOf")
    if isinstance(branches, list) and set(compiled) <= {"anyOf", "description"}:
        if _NULL not in branches:
            branches.append(dict(_NULL))
        return compiled
    description = compiled.pop("description", None)
    result: dict[str, Any] = {"anyOf": [compiled, dict(_NULL)]}
    if description:
        result["description"] = description
    return result


def fill_defaults(node: SchemaNode, value: Any) -> Any:
    """Replace ``null`` optional values with their declared defaults, recursively."""

    if isinstance(node, OptionalSchema):
        if value is None:
            return node.default
        return fill_defaults(node.inner, value)
    if isinstance(node, ObjectSchema) and isinstance(value, Mapping):
        filled = dict(value)
        for name, child in node.properties.items():
            if name in filled or isinstance(child, OptionalSchema):
                filled[name] = fill_defaults(child, filled.get(name))
        return filled
    if isinstance(node, ArraySchema) and isinstance(value, list):
        return [fill_defaults(node.items, item) for item in value]
    return value


def fill_missing_optionals(node: SchemaNode, value: Any) -> Any:
    """Insert ``null`` for optional object keys the caller left out, recursively.

    Non-strict backends may omit optional keys entirely; the strict compiled
    schema lists every key as required, so absent optionals are made explicit
    before validation.
    """

    if isinstance(node, OptionalSchema):
        return None if value is None else fill_missing_optionals(node.inner, value)
    if isinstance(node, ObjectSchema) and isinstance(value, Mapping):
        filled = dict(value)
        for name, child in node.properties.items():
            if name in filled:
                filled[name] = fill_missing_optionals(child, filled[name])
            elif isinstance(child, OptionalSchema):
                filled[name] = None
        return filled
    if isinstance(node, ArraySchema) and isinstance(value, list):
        return [fill_missing_optionals(node.items, item) for item in value]
    return value
