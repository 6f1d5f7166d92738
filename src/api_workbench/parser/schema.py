"""Schema reference resolution and example generation.

Raw OpenAPI schemas are loosely typed trees. ``SchemaResolver.classify``
turns one level of such a tree into a tagged variant (scalar, object, array
or composite) so the walkers below can dispatch on the kind instead of
probing keys ad hoc. Children stay raw and are classified lazily, which
keeps ``$ref`` resolution and the depth cap in one place.
"""

import json
import logging
from typing import Any, Literal

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from api_workbench.parser.base import BodyField

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 8

BINARY_FORMATS = ("binary", "base64")

_ZERO_VALUES = {
    "string": "",
    "integer": 0,
    "number": 0.0,
    "boolean": False,
}


class SchemaNode(BaseModel):
    """Fields common to every schema kind."""

    description: str = ""
    example: Any = None
    default: Any = None
    enum: list = []


class ScalarSchema(SchemaNode):
    type: str | None = None  # string / integer / number / boolean / None
    format: str | None = None


class ObjectSchema(SchemaNode):
    properties: dict[str, Any] = {}
    required: list[str] = []


class ArraySchema(SchemaNode):
    items: Any = None


class CompositeSchema(SchemaNode):
    kind: Literal["oneOf", "anyOf", "allOf"]
    options: list[Any] = []


def _schema_type(raw: dict) -> str | None:
    value = raw.get("type")
    if isinstance(value, list):
        # OpenAPI 3.1: ["string", "null"]
        value = next((t for t in value if t != "null"), None)
    return value if isinstance(value, str) else None


class SchemaResolver:
    """Resolves ``$ref`` pointers against one document and walks schemas."""

    def __init__(self, document: dict, max_depth: int = DEFAULT_MAX_DEPTH):
        self.document = document
        self.max_depth = max_depth

    # -- references -----------------------------------------------------------

    def deref(self, value: Any) -> dict:
        """Follow a ``$ref`` chain; anything unresolvable becomes ``{}``."""
        hops = 0
        while isinstance(value, dict) and isinstance(value.get("$ref"), str):
            if hops >= self.max_depth:
                logger.debug(f"Giving up on $ref chain at {value['$ref']}")
                return {}
            value = self._lookup(value["$ref"])
            hops += 1
        return value if isinstance(value, dict) else {}

    def is_ref(self, value: Any) -> bool:
        return isinstance(value, dict) and "$ref" in value

    def _lookup(self, ref: str) -> Any:
        if not ref.startswith("#"):
            logger.debug(f"External $ref not supported: {ref}")
            return None
        node: Any = self.document
        for part in ref[1:].split("/"):
            if not part:
                continue
            part = part.replace("~1", "/").replace("~0", "~")
            if isinstance(node, dict) and part in node:
                node = node[part]
            elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
                node = node[int(part)]
            else:
                logger.debug(f"Failed to resolve ref part '{part}' in {ref}")
                return None
        return node

    # -- classification -------------------------------------------------------

    def classify(self, schema: Any) -> SchemaNode:
        raw = self.deref(schema)
        common = {
            "description": raw.get("description") if isinstance(raw.get("description"), str) else "",
            "example": raw.get("example"),
            "default": raw.get("default"),
            "enum": raw.get("enum") if isinstance(raw.get("enum"), list) else [],
        }
        for kind in ("allOf", "oneOf", "anyOf"):
            options = raw.get(kind)
            if isinstance(options, list) and options:
                if kind == "allOf" and isinstance(raw.get("properties"), dict):
                    # sibling properties act as one more allOf part
                    extra = {"type": "object", "properties": raw["properties"]}
                    if "required" in raw:
                        extra["required"] = raw["required"]
                    options = options + [extra]
                return CompositeSchema(kind=kind, options=options, **common)

        schema_type = _schema_type(raw)
        if schema_type == "object" or isinstance(raw.get("properties"), dict):
            properties = raw.get("properties")
            required = raw.get("required")
            return ObjectSchema(
                properties=properties if isinstance(properties, dict) else {},
                required=[r for r in required if isinstance(r, str)] if isinstance(required, list) else [],
                **common,
            )
        if schema_type == "array" or "items" in raw:
            return ArraySchema(items=raw.get("items"), **common)
        fmt = raw.get("format")
        return ScalarSchema(type=schema_type, format=fmt if isinstance(fmt, str) else None, **common)

    # -- examples -------------------------------------------------------------

    def explicit_example(self, schema: Any) -> Any:
        """``example``, then ``default``, then the first enum entry; else None."""
        node = schema if isinstance(schema, SchemaNode) else self.classify(schema)
        if node.example is not None:
            return node.example
        if node.default is not None:
            return node.default
        if node.enum:
            return node.enum[0]
        return None

    def resolve_example(self, schema: Any, depth: int = 0) -> Any:
        """Build an example value for *schema*, recursing into children."""
        node = self.classify(schema)
        explicit = self.explicit_example(node)
        if explicit is not None:
            return explicit
        if depth >= self.max_depth:
            return _placeholder(node)

        if isinstance(node, ObjectSchema):
            obj = {}
            for name, prop in node.properties.items():
                value = self.resolve_example(prop, depth + 1)
                if value is not None:
                    obj[name] = value
            return obj
        if isinstance(node, ArraySchema):
            if node.items is None:
                return []
            item = self.resolve_example(node.items, depth + 1)
            return [item] if item is not None else []
        if isinstance(node, CompositeSchema):
            return self._composite_example(node, depth)
        if isinstance(node, ScalarSchema):
            return _ZERO_VALUES.get(node.type)
        raise TypeError(f"Unknown schema node {type(node).__name__}")

    def _composite_example(self, node: CompositeSchema, depth: int) -> Any:
        if node.kind == "allOf":
            merged: dict = {}
            for option in node.options:
                value = self.resolve_example(option, depth + 1)
                if isinstance(value, dict):
                    merged.update(value)
                elif value is not None and not merged:
                    return value
            return merged
        for option in node.options:
            value = self.resolve_example(option, depth + 1)
            if value is not None:
                return value
        return None

    # -- field expansion ------------------------------------------------------

    def object_view(self, schema: Any, depth: int = 0) -> tuple[dict, list[str] | None]:
        """Properties and ``required`` list of an object (allOf parts merged).

        The required list is None when no part declares one.
        """
        node = self.classify(schema)
        if isinstance(node, ObjectSchema):
            raw = self.deref(schema)
            declared = node.required if isinstance(raw.get("required"), list) else None
            return dict(node.properties), declared
        if isinstance(node, CompositeSchema) and node.kind == "allOf" and depth < self.max_depth:
            properties: dict = {}
            required: list[str] | None = None
            for option in node.options:
                props, req = self.object_view(option, depth + 1)
                properties.update(props)
                if req is not None:
                    required = (required or []) + [r for r in req if r not in (required or [])]
            return properties, required
        return {}, None

    def is_object_like(self, schema: Any) -> bool:
        properties, _ = self.object_view(schema)
        return bool(properties) or isinstance(self.classify(schema), ObjectSchema)

    def expand_schema_to_fields(self, schema: Any, inherited_required: bool | None = None) -> list[BodyField]:
        """Flatten an object schema one level into form fields.

        Nested objects (and arrays of objects) are not flattened further:
        they become a single field marked ``is_json`` whose value the caller
        supplies as JSON text.
        """
        properties, required = self.object_view(schema)
        fields = []
        for name, prop in properties.items():
            node = self.classify(prop)
            if required is not None:
                is_required = name in required
            else:
                is_required = bool(inherited_required)
            is_array = isinstance(node, ArraySchema)
            fields.append(
                BodyField(
                    name=name,
                    required=is_required,
                    is_file=self.is_binary(prop) or (is_array and self.is_binary(node.items)),
                    is_array=is_array,
                    description=node.description,
                    is_json=self._needs_json(node),
                )
            )
        return fields

    def _needs_json(self, node: SchemaNode) -> bool:
        if isinstance(node, ObjectSchema):
            return True
        if isinstance(node, CompositeSchema):
            return node.kind == "allOf" or any(self.is_object_like(o) for o in node.options)
        if isinstance(node, ArraySchema) and node.items is not None:
            return self.is_object_like(node.items)
        return False

    def is_binary(self, schema: Any) -> bool:
        if schema is None:
            return False
        node = self.classify(schema)
        return isinstance(node, ScalarSchema) and node.type == "string" and node.format in BINARY_FORMATS

    # -- misc -----------------------------------------------------------------

    def enum_values(self, schema: Any) -> list[str]:
        node = self.classify(schema)
        values = node.enum
        if not values and isinstance(node, ArraySchema) and node.items is not None:
            values = self.classify(node.items).enum
        return [_enum_text(v) for v in values]

    def dereference(self, schema: Any, depth: int = 0) -> Any:
        """Return a copy of *schema* with every ``$ref`` inlined (depth capped)."""
        if isinstance(schema, list):
            return [self.dereference(item, depth) for item in schema]
        if not isinstance(schema, dict):
            return schema
        if self.is_ref(schema):
            if depth >= self.max_depth:
                return {}
            return self.dereference(self.deref(schema), depth + 1)
        return {key: self.dereference(value, depth) for key, value in schema.items()}


def _placeholder(node: SchemaNode) -> Any:
    if isinstance(node, ObjectSchema):
        return {}
    if isinstance(node, ArraySchema):
        return []
    if isinstance(node, ScalarSchema):
        return _ZERO_VALUES.get(node.type)
    return None


def _enum_text(value: Any) -> str:
    value = to_jsonable_python(value, fallback=str)
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)
