"""Tagged argument schemas for tools.

A tool describes its arguments once, as a tree of schema nodes. Two views are
derived from that tree:

* :func:`to_json_schema` walks the nodes and emits the JSON-Schema-like hint
  sent to the model. It is lenient: node kinds it does not know are rendered
  as ``{"type": "string"}``.
* :func:`compile_model` builds a pydantic model used to validate the
  arguments the model sends back. It is strict and reports field paths.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError, create_model

from billing_copilot.errors import ToolValidationError


@dataclass(frozen=True, kw_only=True)
class SchemaNode:
    description: str | None = None

    @property
    def kind(self) -> str:
        return "unknown"


@dataclass(frozen=True, kw_only=True)
class StringNode(SchemaNode):
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    strip: bool = True

    @property
    def kind(self) -> str:
        return "string"


@dataclass(frozen=True, kw_only=True)
class NumberNode(SchemaNode):
    minimum: float | None = None
    maximum: float | None = None
    exclusive_minimum: float | None = None
    integer: bool = False

    @property
    def kind(self) -> str:
        return "number"


@dataclass(frozen=True, kw_only=True)
class BooleanNode(SchemaNode):
    @property
    def kind(self) -> str:
        return "boolean"


@dataclass(frozen=True, kw_only=True)
class EnumNode(SchemaNode):
    values: tuple[str, ...]

    @property
    def kind(self) -> str:
        return "enum"


@dataclass(frozen=True, kw_only=True)
class ArrayNode(SchemaNode):
    items: SchemaNode
    min_items: int | None = None

    @property
    def kind(self) -> str:
        return "array"


@dataclass(frozen=True, kw_only=True)
class ObjectNode(SchemaNode):
    fields: Mapping[str, SchemaNode] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return "object"

    def extend(self, **extra: SchemaNode) -> ObjectNode:
        """Return a copy with additional (or overridden) fields."""
        return ObjectNode(fields={**self.fields, **extra}, description=self.description)


@dataclass(frozen=True, kw_only=True)
class OptionalNode(SchemaNode):
    inner: SchemaNode

    @property
    def kind(self) -> str:
        return "optional"


@dataclass(frozen=True, kw_only=True)
class DefaultNode(SchemaNode):
    inner: SchemaNode
    value: Any

    @property
    def kind(self) -> str:
        return "default"


@dataclass(frozen=True, kw_only=True)
class AnyNode(SchemaNode):
    """Accepts any JSON value. Has no JSON-Schema rendering of its own."""

    @property
    def kind(self) -> str:
        return "any"


# ── builders ────────────────────────────────────────────────────


def string(description: str | None = None, **constraints: Any) -> StringNode:
    return StringNode(description=description, **constraints)


def number(description: str | None = None, **constraints: Any) -> NumberNode:
    return NumberNode(description=description, **constraints)


def integer(description: str | None = None, **constraints: Any) -> NumberNode:
    return NumberNode(description=description, integer=True, **constraints)


def boolean(description: str | None = None) -> BooleanNode:
    return BooleanNode(description=description)


def enum(*values: str, description: str | None = None) -> EnumNode:
    return EnumNode(values=tuple(values), description=description)


def array(items: SchemaNode, description: str | None = None, min_items: int | None = None) -> ArrayNode:
    return ArrayNode(items=items, description=description, min_items=min_items)


def obj(description: str | None = None, **fields: SchemaNode) -> ObjectNode:
    return ObjectNode(fields=fields, description=description)


def optional(inner: SchemaNode) -> OptionalNode:
    return OptionalNode(inner=inner, description=inner.description)


def default(inner: SchemaNode, value: Any) -> DefaultNode:
    return DefaultNode(inner=inner, value=value, description=inner.description)


# ── JSON-Schema serialisation ──────────────────────────────────


def _is_optional(node: SchemaNode) -> bool:
    return isinstance(node, (OptionalNode, DefaultNode))


def _object_schema(node: ObjectNode) -> dict[str, Any]:
    result: dict[str, Any] = {
        "type": "object",
        "properties": {name: to_json_schema(child) for name, child in node.fields.items()},
    }
    required = [name for name, child in node.fields.items() if not _is_optional(child)]
    if required:
        result["required"] = required
    return result


def _enum_schema(node: EnumNode) -> dict[str, Any]:
    return {"type": "string", "enum": list(node.values)}


def _array_schema(node: ArrayNode) -> dict[str, Any]:
    return {"type": "array", "items": to_json_schema(node.items)}


def _number_schema(node: NumberNode) -> dict[str, Any]:
    return {"type": "integer" if node.integer else "number"}


_SERIALIZERS: dict[str, Callable[[Any], dict[str, Any]]] = {
    "object": _object_schema,
    "string": lambda node: {"type": "string"},
    "number": _number_schema,
    "boolean": lambda node: {"type": "boolean"},
    "enum": _enum_schema,
    "array": _array_schema,
    "optional": lambda node: to_json_schema(node.inner),
    "default": lambda node: to_json_schema(node.inner),
}


def to_json_schema(node: SchemaNode) -> dict[str, Any]:
    """Render *node* as a JSON-Schema-like dict for the model."""
    serializer = _SERIALIZERS.get(node.kind)
    schema = serializer(node) if serializer else {"type": "string"}
    if node.description and "description" not in schema:
        schema["description"] = node.description
    return schema


# ── strict validation ──────────────────────────────────────────

_MODEL_CONFIG = ConfigDict(extra="ignore")


def _python_type(node: SchemaNode, name: str) -> Any:
    match node:
        case ObjectNode():
            return compile_model(node, name)
        case StringNode():
            return Annotated[
                str,
                StringConstraints(
                    strip_whitespace=node.strip,
                    min_length=node.min_length,
                    max_length=node.max_length,
                    pattern=node.pattern,
                ),
            ]
        case NumberNode():
            base = int if node.integer else float
            return Annotated[base, Field(ge=node.minimum, le=node.maximum, gt=node.exclusive_minimum)]
        case BooleanNode():
            return bool
        case EnumNode():
            return Literal[node.values]
        case ArrayNode():
            item_type = _python_type(node.items, f"{name}Item")
            return Annotated[list[item_type], Field(min_length=node.min_items)]
        case OptionalNode():
            return Optional[_python_type(node.inner, name)]
        case DefaultNode():
            return _python_type(node.inner, name)
    return Any


def compile_model(node: ObjectNode, name: str = "Arguments") -> type[BaseModel]:
    """Build a pydantic model mirroring *node*."""
    definitions: dict[str, Any] = {}
    for field_name, child in node.fields.items():
        annotation = _python_type(child, f"{name}_{field_name}")
        if isinstance(child, OptionalNode):
            definitions[field_name] = (annotation, None)
        elif isinstance(child, DefaultNode):
            definitions[field_name] = (annotation, child.value)
        else:
            definitions[field_name] = (annotation, ...)
    return create_model(name, __config__=_MODEL_CONFIG, **definitions)


def validate_arguments(model: type[BaseModel], raw: Any) -> dict[str, Any]:
    """Validate *raw* against *model* and return plain data.

    Raises :class:`ToolValidationError` with dot-joined field paths.
    """
    try:
        parsed = model.model_validate(raw if raw is not None else {})
    except ValidationError as exc:
        issues = [
            (".".join(str(part) for part in error["loc"]), error["msg"])
            for error in exc.errors()
        ]
        raise ToolValidationError(issues) from exc
    return parsed.model_dump()
