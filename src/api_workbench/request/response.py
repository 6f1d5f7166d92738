"""Inspect formatted responses against an endpoint's response table."""

import json
import re
from typing import Any, Literal

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from api_workbench.parser.base import ResponseSchema

_STATUS_PREFIX = "Status: "
_HEADERS_PREFIX = "\n\nHeaders:\n"
_BODY_PREFIX = "\n\nBody:\n"


class ParsedResponse(BaseModel):
    status_line: str | None = None
    headers: list[tuple[str, str]] = []
    body: str = ""
    body_pretty: str = ""
    is_json: bool = False
    json_value: Any = None


class SchemaRow(BaseModel):
    path: str
    name: str
    depth: int
    type: str
    required: bool = False
    description: str = ""
    example: str = ""
    format: str = ""
    enum_values: str = ""


def parse_response(raw: str) -> ParsedResponse | None:
    """Split a formatted response back into status, headers and body."""
    if not raw:
        return None
    if raw.startswith("Error:"):
        return ParsedResponse(status_line="Error", body=raw, body_pretty=raw)
    if not raw.startswith(_STATUS_PREFIX):
        return ParsedResponse(body=raw, body_pretty=raw)

    headers_index = raw.find(_HEADERS_PREFIX)
    body_index = raw.find(_BODY_PREFIX, max(headers_index, 0))
    if headers_index == -1 or body_index == -1:
        return ParsedResponse(status_line=raw[len(_STATUS_PREFIX):].strip(), body=raw, body_pretty=raw)

    status_line = raw[len(_STATUS_PREFIX):headers_index].strip()
    headers = []
    for line in raw[headers_index + len(_HEADERS_PREFIX):body_index].splitlines():
        line = line.strip()
        if not line:
            continue
        key, _, value = line.partition(":")
        headers.append((key.strip(), value.strip()))

    body = raw[body_index + len(_BODY_PREFIX):]
    parsed = ParsedResponse(status_line=status_line, headers=headers, body=body, body_pretty=body)
    stripped = body.strip()
    if stripped.startswith(("{", "[")):
        try:
            value = json.loads(stripped)
        except ValueError:
            return parsed
        parsed.json_value = value
        parsed.is_json = True
        parsed.body_pretty = json.dumps(value, indent=2, ensure_ascii=False)
    return parsed


def status_code_of(status_line: str | None) -> str | None:
    if not status_line:
        return None
    match = re.search(r"\b\d{3}\b", status_line)
    return match.group(0) if match else None


def pick_response_schema(
    schemas: list[ResponseSchema], status_code: str | None
) -> tuple[ResponseSchema | None, Literal["exact", "fallback", "none"]]:
    """Exact code, then an ``NXX`` wildcard, then ``default``, then the first entry."""
    if not schemas:
        return None, "none"
    if status_code:
        for schema in schemas:
            if schema.status_pattern == status_code:
                return schema, "exact"
        for schema in schemas:
            pattern = schema.status_pattern.strip().lower()
            if len(pattern) == 3 and pattern.endswith("xx") and pattern[0] == status_code[0]:
                return schema, "fallback"
    for schema in schemas:
        if schema.status_pattern.strip().lower() == "default":
            return schema, "fallback"
    return schemas[0], "fallback"


def schema_type_label(schema: dict) -> str:
    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        schema_type = next((t for t in schema_type if t != "null"), "")
    if schema_type == "array":
        items = schema.get("items")
        if isinstance(items, dict):
            item_type = schema_type_label(items)
            return f"array<{item_type}>" if item_type else "array"
        return "array"
    if isinstance(schema_type, str) and schema_type:
        return schema_type
    if isinstance(schema.get("enum"), list):
        return "enum"
    if isinstance(schema.get("properties"), dict):
        return "object"
    for kind in ("oneOf", "anyOf", "allOf"):
        if isinstance(schema.get(kind), list):
            return kind
    return "object"


def schema_rows(schema: Any) -> list[SchemaRow]:
    """Flatten a (dereferenced) schema into display rows, depth first."""
    if isinstance(schema, str):
        try:
            schema = json.loads(schema)
        except ValueError:
            return []
    if not isinstance(schema, dict):
        return []
    rows: list[SchemaRow] = []
    _walk(schema, "root", 0, False, rows)
    return rows


def _walk(schema: dict, path: str, depth: int, required: bool, rows: list[SchemaRow]) -> None:
    example = schema.get("example")
    if example is None:
        example = schema.get("default")
    enum = schema.get("enum")
    rows.append(
        SchemaRow(
            path=path,
            name="root" if path == "root" else path.split(".")[-1],
            depth=depth,
            type=schema_type_label(schema),
            required=required,
            description=schema.get("description") if isinstance(schema.get("description"), str) else "",
            example=_example_text(example),
            format=schema.get("format") if isinstance(schema.get("format"), str) else "",
            enum_values=", ".join(str(v) for v in enum) if isinstance(enum, list) else "",
        )
    )

    properties = schema.get("properties")
    if isinstance(properties, dict):
        required_set = {r for r in schema.get("required", []) if isinstance(r, str)} if isinstance(
            schema.get("required"), list
        ) else set()
        for key, value in properties.items():
            if isinstance(value, dict):
                child = f"root.{key}" if path == "root" else f"{path}.{key}"
                _walk(value, child, depth + 1, key in required_set, rows)

    if schema.get("type") == "array" and isinstance(schema.get("items"), dict):
        _walk(schema["items"], f"{path}[]", depth + 1, False, rows)

    for kind in ("oneOf", "anyOf", "allOf"):
        options = schema.get(kind)
        if not isinstance(options, list):
            continue
        for index, option in enumerate(options, start=1):
            if isinstance(option, dict):
                _walk(option, f"{path} ({kind} {index})", depth + 1, False, rows)


def _example_text(value: Any) -> str:
    if value is None:
        return ""
    value = to_jsonable_python(value, fallback=str)
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return json.dumps(value, ensure_ascii=False)
