"""Load raw OpenAPI text into a document mapping."""

import json

import yaml

from api_workbench.errors import ParseError


def load_document(raw: bytes | str | dict) -> dict:
    """Parse JSON or YAML text into an OpenAPI document.

    Raises ParseError when the text is neither, the root is not a mapping,
    or the document has no ``paths`` object.
    """
    if isinstance(raw, dict):
        doc = raw
    else:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise ParseError(f"Document is not valid UTF-8: {e}") from e
        doc = _parse_text(raw)

    if not isinstance(doc, dict):
        raise ParseError("OpenAPI document must be a JSON/YAML object")
    if not isinstance(doc.get("paths"), dict):
        raise ParseError("OpenAPI document has no 'paths' object")
    return doc


def detect_version(doc: dict) -> str:
    """Return the declared OpenAPI/Swagger version, or '' when absent."""
    version = doc.get("openapi") or doc.get("swagger") or ""
    return str(version)


def _parse_text(text: str):
    # JSON first, then YAML
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        pass

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid OpenAPI format. Must be valid JSON or YAML. Error: {e}") from e
