"""OpenAPI document normalizer.

Turns an OpenAPI 3.0/3.1 document into a Collection of endpoints grouped by
tag. Missing optional data yields empty values; only a document that is not
JSON/YAML or has no ``paths`` object is rejected.
"""

import json
import logging
import re
from typing import Any

from pydantic_core import to_jsonable_python

from api_workbench.parser.base import (
    BODY_METHODS,
    FORM_MEDIA_TYPES,
    JSON_MEDIA_TYPE,
    MULTIPART_MEDIA_TYPE,
    URLENCODED_MEDIA_TYPE,
    Collection,
    Endpoint,
    Parameter,
    ResponseSchema,
    is_json_media_type,
)
from api_workbench.parser.detect import detect_version, load_document
from api_workbench.parser.schema import DEFAULT_MAX_DEPTH, SchemaResolver

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")
PARAM_LOCATIONS = ("path", "query", "header")
DEFAULT_TAG = "default"

_BODY_TYPE_PREFERENCE = (JSON_MEDIA_TYPE, MULTIPART_MEDIA_TYPE, URLENCODED_MEDIA_TYPE)


def normalize(raw_document: bytes | str | dict, source_url: str, max_depth: int = DEFAULT_MAX_DEPTH) -> Collection:
    """Normalize an OpenAPI document into a Collection."""
    doc = load_document(raw_document)
    resolver = SchemaResolver(doc, max_depth=max_depth)

    groups: dict[str, list[Endpoint]] = {}
    for path, path_item in doc["paths"].items():
        path_item = resolver.deref(path_item)
        if not path_item:
            continue
        path_params = _as_list(path_item.get("parameters"))

        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if not isinstance(operation, dict):
                continue
            endpoint = _parse_operation(resolver, str(path), method.upper(), operation, path_params)
            tags = operation.get("tags")
            tag = tags[0] if isinstance(tags, list) and tags and isinstance(tags[0], str) else DEFAULT_TAG
            groups.setdefault(tag, []).append(endpoint)

    info = doc.get("info") if isinstance(doc.get("info"), dict) else {}
    title = info.get("title")
    collection = Collection(
        name=title if isinstance(title, str) and title else source_url,
        source_url=source_url,
        base_url=_base_url(doc),
        groups=groups,
    )
    logger.debug(
        f"Normalized {source_url} (openapi {detect_version(doc) or '?'}): "
        f"{sum(len(eps) for eps in groups.values())} endpoints in {len(groups)} groups"
    )
    return collection


def _base_url(doc: dict) -> str:
    servers = _as_list(doc.get("servers"))
    if servers and isinstance(servers[0], dict) and isinstance(servers[0].get("url"), str):
        return servers[0]["url"].rstrip("/")
    return ""


def _parse_operation(
    resolver: SchemaResolver,
    path: str,
    method: str,
    operation: dict,
    path_params: list,
) -> Endpoint:
    body: dict[str, Any] = {}
    if method in BODY_METHODS and operation.get("requestBody") is not None:
        body = _parse_request_body(resolver, operation["requestBody"])

    return Endpoint(
        method=method,
        path=path,
        summary=_text(operation.get("summary")),
        description=_text(operation.get("description")),
        parameters=_parse_parameters(resolver, path_params, _as_list(operation.get("parameters"))),
        response_schemas=_parse_responses(resolver, operation.get("responses")),
        **body,
    )


# -- parameters ---------------------------------------------------------------


def _parse_parameters(resolver: SchemaResolver, path_params: list, op_params: list) -> list[Parameter]:
    merged: dict[tuple[str, str], dict] = {}
    # operation-level entries replace path-level ones with the same (name, in)
    for raw in path_params + op_params:
        param = resolver.deref(raw)
        name = param.get("name")
        location = param.get("in", "query")
        if not isinstance(name, str) or not name:
            continue
        if location not in PARAM_LOCATIONS:
            logger.debug(f"Skipping {location} parameter '{name}'")
            continue
        merged[(location, name)] = param

    built: list[tuple[Parameter, bool]] = []
    for (location, name), param in merged.items():
        schema = param.get("schema")
        if location == "query" and schema is not None and _is_dto(resolver, schema):
            built.extend((p, True) for p in _expand_query_dto(resolver, param, schema))
        else:
            built.append((_build_parameter(resolver, param, location, name), False))

    # declared parameters take precedence over expanded DTO fields
    seen = {(p.location, p.name) for p, is_expanded in built if not is_expanded}
    result = []
    for param, is_expanded in built:
        if is_expanded:
            if (param.location, param.name) in seen:
                continue
            seen.add((param.location, param.name))
        result.append(param)
    return result


def _build_parameter(resolver: SchemaResolver, param: dict, location: str, name: str) -> Parameter:
    schema = param.get("schema")
    description = _text(param.get("description"))
    if not description and schema is not None:
        description = resolver.classify(schema).description
    return Parameter(
        name=name,
        location=location,
        # path parameters are always required in OpenAPI
        required=bool(param.get("required", False)) or location == "path",
        description=description,
        example=_parameter_example(resolver, param),
        enum_values=resolver.enum_values(schema) if schema is not None else [],
    )


def _parameter_example(resolver: SchemaResolver, param: dict) -> Any:
    if param.get("example") is not None:
        return param["example"]
    examples = param.get("examples")
    if isinstance(examples, dict):
        for example in examples.values():
            value = resolver.deref(example).get("value")
            if value is not None:
                return value
    schema = param.get("schema")
    if schema is not None:
        return resolver.explicit_example(schema)
    return None


def _is_dto(resolver: SchemaResolver, schema: Any) -> bool:
    if resolver.is_ref(schema):
        return resolver.is_object_like(schema)
    properties, _ = resolver.object_view(schema)
    return bool(properties)


def _expand_query_dto(resolver: SchemaResolver, param: dict, schema: Any) -> list[Parameter]:
    properties, _ = resolver.object_view(schema)
    fields = resolver.expand_schema_to_fields(schema, inherited_required=bool(param.get("required", False)))
    params = []
    for field in fields:
        sub_schema = properties.get(field.name)
        if field.is_json:
            example = resolver.explicit_example(sub_schema)
            if example is None:
                example = resolver.resolve_example(sub_schema)
            if example is not None:
                example = json.dumps(to_jsonable_python(example, fallback=str), ensure_ascii=False)
        else:
            example = resolver.explicit_example(sub_schema)
        params.append(
            Parameter(
                name=field.name,
                location="query",
                required=field.required,
                description=field.description,
                example=example,
                enum_values=resolver.enum_values(sub_schema),
                is_json=field.is_json,
            )
        )
    return params


# -- request body -------------------------------------------------------------


def _parse_request_body(resolver: SchemaResolver, raw_body: Any) -> dict[str, Any]:
    body = resolver.deref(raw_body)
    content = body.get("content") if isinstance(body.get("content"), dict) else {}
    media_types = [str(mt) for mt in content]

    result: dict[str, Any] = {
        "body_required": bool(body.get("required", False)),
        "body_media_types": media_types,
        "body_type": _choose_body_type(media_types),
        "body_description": _text(body.get("description")) or None,
    }
    if not media_types:
        return result

    body_type = result["body_type"]
    media = resolver.deref(content.get(body_type))
    if is_json_media_type(body_type):
        example = _media_example(resolver, media)
        result["body_example"] = _format_body_example(example)
        if result["body_description"] is None and media.get("schema") is not None:
            result["body_description"] = resolver.classify(media["schema"]).description or None

    for form_type in FORM_MEDIA_TYPES:
        if form_type in content:
            form_schema = resolver.deref(content[form_type]).get("schema")
            if form_schema is not None:
                result["body_fields"] = resolver.expand_schema_to_fields(form_schema)
                result["body_fields_type"] = form_type
            break
    return result


def _choose_body_type(media_types: list[str]) -> str | None:
    for preferred in _BODY_TYPE_PREFERENCE:
        if preferred in media_types:
            return preferred
    return media_types[0] if media_types else None


def _media_example(resolver: SchemaResolver, media: dict) -> Any:
    if media.get("example") is not None:
        return media["example"]
    examples = media.get("examples")
    if isinstance(examples, dict):
        for example in examples.values():
            value = resolver.deref(example).get("value")
            if value is not None:
                return value
    if media.get("schema") is not None:
        return resolver.resolve_example(media["schema"])
    return None


def _format_body_example(example: Any) -> str | None:
    if example is None:
        return None
    if isinstance(example, str):
        return example
    return json.dumps(to_jsonable_python(example, fallback=str), ensure_ascii=False, indent=2)


# -- responses ----------------------------------------------------------------


def _parse_responses(resolver: SchemaResolver, responses: Any) -> list[ResponseSchema]:
    if not isinstance(responses, dict):
        return []
    result = []
    for status, raw in responses.items():
        resp = resolver.deref(raw)
        content = resp.get("content") if isinstance(resp.get("content"), dict) else {}
        content_type = ""
        schema = None
        for ct, media in content.items():
            content_type = str(ct)
            media_schema = resolver.deref(media).get("schema")
            if media_schema is not None:
                schema = resolver.dereference(media_schema)
            break
        result.append(
            ResponseSchema(
                status_pattern=str(status),
                content_type=content_type,
                schema=schema if isinstance(schema, dict) else None,
                description=_text(resp.get("description")),
            )
        )
    return result


# -- ordering helpers for callers ---------------------------------------------


def endpoint_label(endpoint: Endpoint) -> str:
    """Display label: summary, description, or the last path segment."""
    hint = endpoint.summary or endpoint.description
    if hint:
        return hint
    segments = [s for s in endpoint.path.split("/") if s]
    return segments[-1] if segments else DEFAULT_TAG


def sort_endpoints(endpoints: list[Endpoint]) -> list[Endpoint]:
    """Sort by summary, then description, then path; case-insensitive and numeric-aware."""
    return sorted(endpoints, key=lambda ep: (_natural_key(ep.summary or ep.description or ep.path), ep.path, ep.method))


def _natural_key(text: str) -> tuple:
    parts = re.split(r"(\d+)", text.casefold())
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p)


# -- small helpers ------------------------------------------------------------


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""
