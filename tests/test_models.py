import pytest
from pydantic import ValidationError

from api_workbench.parser.base import (
    BodyField,
    Collection,
    Endpoint,
    Parameter,
    ResponseSchema,
    is_absolute_url,
    is_json_media_type,
)


class TestParameter:
    def test_create_required_param(self):
        p = Parameter(name="id", location="path", required=True)
        assert p.name == "id"
        assert p.required is True
        assert p.description == ""
        assert p.example is None
        assert p.enum_values == []
        assert p.is_json is False

    def test_param_is_frozen(self):
        p = Parameter(name="id", location="path")
        with pytest.raises(ValidationError):
            p.name = "other"


class TestBodyField:
    def test_defaults(self):
        f = BodyField(name="photo", is_file=True)
        assert f.is_file is True
        assert f.is_array is False
        assert f.required is False


class TestResponseSchema:
    def test_schema_alias(self):
        r = ResponseSchema(status_pattern="200", schema={"type": "string"})
        assert r.schema_ == {"type": "string"}
        assert r.model_dump(by_alias=True)["schema"] == {"type": "string"}


class TestEndpoint:
    def test_create_minimal_endpoint(self):
        ep = Endpoint(method="GET", path="/api/users")
        assert ep.key == "GET:/api/users"
        assert ep.parameters == []
        assert ep.body_type is None
        assert ep.body_fields == []

    def test_parameters_in(self):
        ep = Endpoint(
            method="GET",
            path="/api/users/{id}",
            parameters=[
                Parameter(name="id", location="path", required=True),
                Parameter(name="q", location="query"),
            ],
        )
        assert [p.name for p in ep.parameters_in("query")] == ["q"]

    def test_endpoint_serialization_roundtrip(self):
        ep = Endpoint(
            method="DELETE",
            path="/api/users/{id}",
            parameters=[Parameter(name="id", location="path", required=True)],
            response_schemas=[ResponseSchema(status_pattern="204", description="Deleted")],
        )
        data = ep.model_dump()
        ep2 = Endpoint(**data)
        assert ep2 == ep


class TestCollection:
    def _collection(self, base_url="", source_url="https://api.example.com/openapi.json"):
        return Collection(
            name="Example",
            source_url=source_url,
            base_url=base_url,
            groups={
                "users": [Endpoint(method="GET", path="/users"), Endpoint(method="POST", path="/users")],
                "default": [Endpoint(method="GET", path="/health")],
            },
        )

    def test_endpoints_iterates_in_group_order(self):
        keys = [ep.key for ep in self._collection().endpoints()]
        assert keys == ["GET:/users", "POST:/users", "GET:/health"]

    def test_find(self):
        col = self._collection()
        assert col.find("post", "/users").method == "POST"
        assert col.find("DELETE", "/users") is None

    def test_endpoint_url_absolute_base(self):
        col = self._collection(base_url="https://api.example.com/v1")
        ep = col.find("GET", "/users")
        assert col.endpoint_url(ep) == "https://api.example.com/v1/users"

    def test_endpoint_url_relative_base_resolved_against_source(self):
        col = self._collection(base_url="/v2")
        ep = col.find("GET", "/users")
        assert col.endpoint_url(ep) == "https://api.example.com/v2/users"

    def test_endpoint_url_stays_relative_without_absolute_source(self):
        col = self._collection(source_url="specs/local.yaml")
        ep = col.find("GET", "/users")
        assert col.endpoint_url(ep) == "/users"


class TestHelpers:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://example.com/a", True),
            ("http://localhost:8080", True),
            ("/relative/path", False),
            ("example.com/a", False),
            ("", False),
        ],
    )
    def test_is_absolute_url(self, url, expected):
        assert is_absolute_url(url) is expected

    def test_is_json_media_type(self):
        assert is_json_media_type("application/json")
        assert is_json_media_type("application/json; charset=utf-8")
        assert is_json_media_type("application/problem+json")
        assert not is_json_media_type("text/plain")
        assert not is_json_media_type(None)
