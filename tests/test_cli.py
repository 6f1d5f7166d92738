import json
from pathlib import Path

import httpx
import pytest
from click.testing import CliRunner

from api_workbench.cli import main

FIXTURES = Path(__file__).parent / "fixtures"
PETSTORE = str(FIXTURES / "petstore.yaml")
PETSTORE_YAML = (FIXTURES / "petstore.yaml").read_bytes()


@pytest.fixture
def transport(monkeypatch):
    """Route every client the CLI creates through a MockTransport handler."""
    seen: list[httpx.Request] = []
    handlers = {}

    def handler(request: httpx.Request):
        request.read()
        seen.append(request)
        return handlers["handler"](request)

    def install(fn):
        handlers["handler"] = fn
        return seen

    monkeypatch.setattr(
        "api_workbench.http.create_client",
        lambda *args, **kwargs: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return install


class TestCliInspect:
    def test_lists_endpoints_by_tag(self):
        result = CliRunner().invoke(main, ["inspect", PETSTORE])

        assert result.exit_code == 0, result.output
        assert "Swagger Petstore (5 endpoints)" in result.output
        assert "Server: https://petstore.example.com/v1" in result.output
        assert "[pets]" in result.output
        assert "[photos]" in result.output
        assert "[default]" in result.output
        assert "POST    /login  Log in with a form" in result.output

    def test_json_output(self):
        result = CliRunner().invoke(main, ["inspect", PETSTORE, "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["name"] == "Swagger Petstore"
        assert list(data["groups"]) == ["pets", "photos", "default"]
        get_pet = data["groups"]["pets"][2]
        assert get_pet["path"] == "/pets/{petId}"
        assert "schema" in get_pet["response_schemas"][0]

    def test_remote_document(self, transport):
        transport(lambda request: httpx.Response(200, content=PETSTORE_YAML, headers={"ETag": '"v1"'}))
        result = CliRunner().invoke(main, ["inspect", "https://docs.test/openapi.yaml"])
        assert result.exit_code == 0, result.output
        assert "Swagger Petstore" in result.output

    def test_fetch_failure_is_reported(self, transport):
        transport(lambda request: httpx.Response(404))
        result = CliRunner().invoke(main, ["inspect", "https://docs.test/missing.yaml"])
        assert result.exit_code == 1
        assert "404" in result.output


class TestCliSend:
    def test_sends_resolved_request(self, transport):
        seen = transport(lambda request: httpx.Response(200, json={"id": 42}))

        result = CliRunner().invoke(
            main, ["send", PETSTORE, "GET", "/pets/{petId}", "-p", "petId=42", "-p", "X-Trace=abc"]
        )

        assert result.exit_code == 0, result.output
        assert result.output.startswith("GET https://petstore.example.com/v1/pets/42\n")
        assert "Status: 200 OK" in result.output
        (request,) = seen
        assert str(request.url) == "https://petstore.example.com/v1/pets/42"
        assert request.headers["x-trace"] == "abc"

    def test_json_body(self, transport):
        seen = transport(lambda request: httpx.Response(201))

        result = CliRunner().invoke(main, ["send", PETSTORE, "POST", "/pets", "--body", '{"name": "Rex"}'])

        assert result.exit_code == 0, result.output
        assert seen[0].content == b'{"name": "Rex"}'
        assert seen[0].headers["content-type"] == "application/json"

    def test_multipart_upload(self, transport, tmp_path):
        upload = tmp_path / "cat.jpg"
        upload.write_bytes(b"JPEGDATA")
        seen = transport(lambda request: httpx.Response(200))

        result = CliRunner().invoke(
            main,
            [
                "send", PETSTORE, "POST", "/pets/{petId}/photos",
                "-p", "petId=1",
                "--body-type", "multipart/form-data",
                "--form", "caption=hello",
                "--file", f"photo={upload}",
            ],
        )

        assert result.exit_code == 0, result.output
        assert seen[0].headers["content-type"].startswith("multipart/form-data")
        assert b"JPEGDATA" in seen[0].content
        assert b'name="caption"' in seen[0].content

    def test_base_url_override_for_undeclared_path(self, transport):
        seen = transport(lambda request: httpx.Response(200))

        result = CliRunner().invoke(
            main, ["send", PETSTORE, "GET", "/health", "--base-url", "http://localhost:8000/"]
        )

        assert result.exit_code == 0, result.output
        assert str(seen[0].url) == "http://localhost:8000/health"

    def test_transport_failure_exits_nonzero(self, transport):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport(handler)
        result = CliRunner().invoke(main, ["send", PETSTORE, "GET", "/pets"])

        assert result.exit_code == 1
        assert "Error: connection refused" in result.output

    def test_malformed_param(self):
        result = CliRunner().invoke(main, ["send", PETSTORE, "GET", "/pets", "-p", "limit"])
        assert result.exit_code == 2
        assert "NAME=VALUE" in result.output


class TestCliPoll:
    def test_first_result_printed(self, transport):
        transport(lambda request: httpx.Response(200, text="ok"))

        result = CliRunner().invoke(
            main, ["poll", PETSTORE, "GET", "/pets/{petId}", "-p", "petId=7", "--count", "1", "--interval", "30"]
        )

        assert result.exit_code == 0, result.output
        assert "--- #1 GET https://petstore.example.com/v1/pets/7" in result.output
        assert "Status: 200 OK" in result.output

    def test_unknown_endpoint(self):
        result = CliRunner().invoke(main, ["poll", PETSTORE, "GET", "/nothing", "--count", "1"])
        assert result.exit_code == 1
        assert "No endpoint GET /nothing" in result.output

    def test_interval_choices(self):
        result = CliRunner().invoke(main, ["poll", PETSTORE, "GET", "/pets", "--interval", "5"])
        assert result.exit_code == 2


class TestCliWatch:
    def test_reports_update(self, transport):
        v1 = {"info": {"title": "Pets"}, "paths": {"/pets": {"get": {}}}}
        v2 = {"info": {"title": "Pets"}, "paths": {"/pets": {"get": {}, "post": {}}}}
        calls = []

        def handler(request):
            calls.append(request)
            doc = v1 if len(calls) == 1 else v2
            return httpx.Response(200, content=json.dumps(doc).encode(), headers={"ETag": f'"{len(calls)}"'})

        transport(handler)
        result = CliRunner().invoke(main, ["watch", "https://docs.test/openapi.json", "--interval", "0.01", "--count", "1"])

        assert result.exit_code == 0, result.output
        assert "Imported: Pets" in result.output
        assert "syncing" in result.output
        assert "Updated: Pets (2 endpoints)" in result.output
        assert calls[1].headers["if-none-match"] == '"1"'
