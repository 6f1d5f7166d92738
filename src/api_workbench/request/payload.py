"""Build wire-ready requests from an endpoint and user-supplied values.

``build_request`` is pure and never raises: absent or unusable values are
simply left out of the request.
"""

from typing import Any, Mapping
from urllib.parse import quote, urlencode

from pydantic import BaseModel

from api_workbench.parser.base import (
    JSON_MEDIA_TYPE,
    MULTIPART_MEDIA_TYPE,
    URLENCODED_MEDIA_TYPE,
    Endpoint,
)

NO_BODY_METHODS = ("GET", "HEAD")

# characters encodeURIComponent leaves alone
_URI_COMPONENT_SAFE = "-_.!~*'()"


class MultipartFile(BaseModel):
    name: str
    paths: list[str]


class MultipartPayload(BaseModel):
    """Multipart body description; the executor streams files and picks the boundary."""

    fields: dict[str, str] = {}
    files: list[MultipartFile] = []


class PreparedRequest(BaseModel):
    url: str
    headers: dict[str, str] = {}
    body: str | MultipartPayload | None = None

    @property
    def is_multipart(self) -> bool:
        return isinstance(self.body, MultipartPayload)


class RequestInputs(BaseModel):
    """The caller-side values a request is built from."""

    method: str
    url_template: str
    param_values: dict[str, Any] = {}
    body: str = ""
    body_type: str = JSON_MEDIA_TYPE
    form_values: dict[str, Any] = {}
    file_values: dict[str, list[str]] = {}


def build_request(
    endpoint: Endpoint | None,
    method: str,
    url_template: str,
    param_values: Mapping[str, Any] | None = None,
    body_value: str | None = None,
    body_type: str | None = JSON_MEDIA_TYPE,
    form_values: Mapping[str, Any] | None = None,
    file_values: Mapping[str, Any] | None = None,
) -> PreparedRequest:
    """Resolve parameters into the URL and headers, and encode the body."""
    method = (method or "GET").upper()
    param_values = param_values or {}
    url = url_template or ""
    headers: dict[str, str] = {}
    query: list[tuple[str, str]] = []

    for param in endpoint.parameters if endpoint else []:
        value = _text(param_values.get(param.name))
        if not value:
            continue
        if param.location == "path":
            url = url.replace(f"{{{param.name}}}", quote(value, safe=_URI_COMPONENT_SAFE))
        elif param.location == "query":
            query.append((param.name, value))
        elif param.location == "header":
            headers[param.name] = value

    if query:
        separator = "&" if "?" in url else "?"
        url += separator + urlencode(query, quote_via=quote, safe=_URI_COMPONENT_SAFE)

    body = _encode_body(method, body_value, body_type or JSON_MEDIA_TYPE, form_values or {}, file_values or {}, headers)
    return PreparedRequest(url=url, headers=headers, body=body)


def build_from_inputs(endpoint: Endpoint | None, inputs: RequestInputs) -> PreparedRequest:
    return build_request(
        endpoint,
        inputs.method,
        inputs.url_template,
        inputs.param_values,
        inputs.body,
        inputs.body_type,
        inputs.form_values,
        inputs.file_values,
    )


def _encode_body(
    method: str,
    body_value: str | None,
    body_type: str,
    form_values: Mapping[str, Any],
    file_values: Mapping[str, Any],
    headers: dict[str, str],
) -> str | MultipartPayload | None:
    media_type = body_type.split(";", 1)[0].strip().lower()

    if media_type == MULTIPART_MEDIA_TYPE:
        # the executor generates the boundary, so no Content-Type may survive
        for name in [h for h in headers if h.lower() == "content-type"]:
            del headers[name]
        if method in NO_BODY_METHODS:
            return None
        payload = MultipartPayload(
            fields={k: v for k, v in ((k, _text(v)) for k, v in form_values.items()) if v},
            files=[
                MultipartFile(name=name, paths=paths)
                for name, paths in ((n, _paths(p)) for n, p in file_values.items())
                if paths
            ],
        )
        if not payload.fields and not payload.files:
            return None
        return payload

    if method in NO_BODY_METHODS:
        return None

    if media_type == URLENCODED_MEDIA_TYPE:
        pairs = [(k, v) for k, v in ((k, _text(v)) for k, v in form_values.items()) if v]
        if not pairs:
            return None
        _set_default_header(headers, "Content-Type", URLENCODED_MEDIA_TYPE)
        return urlencode(pairs)

    text = body_value if isinstance(body_value, str) else ""
    if not text.strip():
        return None
    _set_default_header(headers, "Content-Type", body_type)
    return text


def _set_default_header(headers: dict[str, str], name: str, value: str) -> None:
    if any(h.lower() == name.lower() for h in headers):
        return
    headers[name] = value


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    return ""


def _paths(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [p for p in value if isinstance(p, str) and p]
