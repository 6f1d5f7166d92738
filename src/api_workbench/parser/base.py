"""Data models for a normalized OpenAPI collection.

The normalizer converts a raw OpenAPI document into these models; the
request builder and the schedulers only ever see these.
"""

from typing import Any, Iterator
from urllib.parse import urljoin, urlparse

from pydantic import BaseModel, ConfigDict, Field

BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")

JSON_MEDIA_TYPE = "application/json"
MULTIPART_MEDIA_TYPE = "multipart/form-data"
URLENCODED_MEDIA_TYPE = "application/x-www-form-urlencoded"
FORM_MEDIA_TYPES = (MULTIPART_MEDIA_TYPE, URLENCODED_MEDIA_TYPE)


def is_absolute_url(url: str) -> bool:
    """True when *url* carries its own scheme and host."""
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


def is_json_media_type(media_type: str | None) -> bool:
    if not media_type:
        return False
    base = media_type.split(";", 1)[0].strip().lower()
    return base == JSON_MEDIA_TYPE or base.endswith("+json")


def endpoint_key(method: str, path: str) -> str:
    return f"{method.upper()}:{path}"


class Parameter(BaseModel):
    """A single path, query or header parameter."""

    model_config = ConfigDict(frozen=True)

    name: str
    location: str  # path / query / header
    required: bool = False
    description: str = ""
    example: Any = None
    enum_values: list[str] = []
    is_json: bool = False  # value is expected as JSON text (inlined nested object)


class BodyField(BaseModel):
    """A form field of a multipart or urlencoded body."""

    model_config = ConfigDict(frozen=True)

    name: str
    required: bool = False
    is_file: bool = False
    is_array: bool = False
    description: str = ""
    is_json: bool = False


class ResponseSchema(BaseModel):
    """One row of an endpoint's response table."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status_pattern: str  # "200" / "4XX" / "default"
    content_type: str = ""
    schema_: dict | None = Field(default=None, alias="schema")
    description: str = ""


class Endpoint(BaseModel):
    """A single API operation, identified by (method, path)."""

    model_config = ConfigDict(frozen=True)

    method: str  # GET / POST / PUT / DELETE / PATCH ...
    path: str  # /pets/{id}
    summary: str = ""
    description: str = ""
    parameters: list[Parameter] = []
    body_type: str | None = None
    body_media_types: list[str] = []
    body_fields: list[BodyField] = []
    body_fields_type: str | None = None
    body_example: str | None = None
    body_description: str | None = None
    body_required: bool = False
    response_schemas: list[ResponseSchema] = []

    @property
    def key(self) -> str:
        return endpoint_key(self.method, self.path)

    def parameters_in(self, location: str) -> list[Parameter]:
        return [p for p in self.parameters if p.location == location]


class Collection(BaseModel):
    """All endpoints imported from one OpenAPI document, grouped by tag."""

    name: str
    source_url: str
    base_url: str = ""
    groups: dict[str, list[Endpoint]] = {}
    sync_enabled: bool = True

    def endpoints(self) -> Iterator[Endpoint]:
        for endpoints in self.groups.values():
            yield from endpoints

    def find(self, method: str, path: str) -> Endpoint | None:
        key = endpoint_key(method, path)
        for endpoint in self.endpoints():
            if endpoint.key == key:
                return endpoint
        return None

    def endpoint_url(self, endpoint: Endpoint) -> str:
        """URL template for *endpoint*: base URL + path, made absolute when possible."""
        url = f"{self.base_url}{endpoint.path}"
        if not is_absolute_url(url) and is_absolute_url(self.source_url):
            url = urljoin(self.source_url, url)
        return url
