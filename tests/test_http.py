import httpx
import pytest

from api_workbench.errors import FetchError, TransportError
from api_workbench.http import DocumentFetcher, HttpExecutor, RawResponse
from api_workbench.request.payload import MultipartFile, MultipartPayload, PreparedRequest


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestRawResponse:
    def test_format(self):
        raw = RawResponse(status_code=200, reason="OK", headers=[("content-type", "application/json")], text="{}")
        assert raw.format() == "Status: 200 OK\n\nHeaders:\ncontent-type: application/json\n\n\nBody:\n{}"


class TestHttpExecutor:
    @pytest.mark.asyncio
    async def test_sends_body_and_headers(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["content_type"] = request.headers.get("content-type")
            seen["body"] = request.content
            return httpx.Response(201, text='{"id": 1}', headers={"ETag": "x"})

        executor = HttpExecutor(_client(handler))
        request = PreparedRequest(
            url="https://api.test/items",
            headers={"Content-Type": "application/json"},
            body='{"name": "a"}',
        )
        raw = await executor.execute("post", request)

        assert seen == {
            "method": "POST",
            "url": "https://api.test/items",
            "content_type": "application/json",
            "body": b'{"name": "a"}',
        }
        assert raw.status_code == 201
        assert raw.reason == "Created"
        assert ("etag", "x") in raw.headers
        assert raw.text == '{"id": 1}'

    @pytest.mark.asyncio
    async def test_multipart_streams_files(self, tmp_path):
        upload = tmp_path / "photo.png"
        upload.write_bytes(b"PNGDATA")
        seen = {}

        def handler(request: httpx.Request):
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.read()
            return httpx.Response(200)

        executor = HttpExecutor(_client(handler))
        payload = MultipartPayload(
            fields={"caption": "hi"},
            files=[MultipartFile(name="photo", paths=[str(upload)])],
        )
        await executor.execute("POST", PreparedRequest(url="https://api.test/up", body=payload))

        assert seen["content_type"].startswith("multipart/form-data; boundary=")
        assert b'name="caption"' in seen["body"]
        assert b'filename="photo.png"' in seen["body"]
        assert b"PNGDATA" in seen["body"]

    @pytest.mark.asyncio
    async def test_multipart_fields_only_is_still_multipart(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["content_type"] = request.headers["content-type"]
            return httpx.Response(200)

        executor = HttpExecutor(_client(handler))
        payload = MultipartPayload(fields={"caption": "hi"})
        await executor.execute("POST", PreparedRequest(url="https://api.test/up", body=payload))
        assert seen["content_type"].startswith("multipart/form-data")

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        executor = HttpExecutor(_client(handler))
        with pytest.raises(TransportError, match="connection refused"):
            await executor.execute("GET", PreparedRequest(url="https://api.test/"))

    @pytest.mark.asyncio
    async def test_non_ascii_header_value(self):
        executor = HttpExecutor(_client(lambda request: httpx.Response(200)))
        request = PreparedRequest(url="https://api.test/", headers={"X-Name": "José"})
        with pytest.raises(TransportError, match="Invalid request"):
            await executor.execute("GET", request)

    @pytest.mark.asyncio
    async def test_invalid_port(self):
        executor = HttpExecutor(_client(lambda request: httpx.Response(200)))
        with pytest.raises(TransportError, match="Invalid request"):
            await executor.execute("GET", PreparedRequest(url="http://host:notaport/x"))

    @pytest.mark.asyncio
    async def test_missing_upload_file(self):
        executor = HttpExecutor(_client(lambda request: httpx.Response(200)))
        payload = MultipartPayload(files=[MultipartFile(name="f", paths=["/definitely/not/here.bin"])])
        with pytest.raises(TransportError, match="Cannot read upload file"):
            await executor.execute("POST", PreparedRequest(url="https://api.test/", body=payload))

    @pytest.mark.asyncio
    async def test_http_error_status_is_a_response(self):
        executor = HttpExecutor(_client(lambda request: httpx.Response(500, text="boom")))
        raw = await executor.execute("GET", PreparedRequest(url="https://api.test/"))
        assert raw.status_code == 500
        assert raw.text == "boom"

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        executor = HttpExecutor()
        client = executor.client
        await executor.aclose()
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_shared_client_left_open(self):
        client = _client(lambda request: httpx.Response(200))
        async with HttpExecutor(client):
            pass
        assert not client.is_closed
        await client.aclose()


class TestDocumentFetcher:
    @pytest.mark.asyncio
    async def test_fetch_returns_content_and_etag(self):
        def handler(request):
            assert "if-none-match" not in request.headers
            return httpx.Response(200, content=b"paths: {}", headers={"ETag": '"v1"'})

        result = await DocumentFetcher(_client(handler)).fetch("https://api.test/openapi.yaml")
        assert result.status_code == 200
        assert result.content == b"paths: {}"
        assert result.etag == '"v1"'
        assert not result.not_modified

    @pytest.mark.asyncio
    async def test_conditional_fetch_not_modified(self):
        def handler(request):
            assert request.headers["if-none-match"] == '"v1"'
            return httpx.Response(304)

        result = await DocumentFetcher(_client(handler)).fetch("https://api.test/openapi.yaml", etag='"v1"')
        assert result.not_modified
        assert result.etag == '"v1"'

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        fetcher = DocumentFetcher(_client(lambda request: httpx.Response(404)))
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch("https://api.test/missing.json")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("dns failure", request=request)

        with pytest.raises(FetchError, match="dns failure"):
            await DocumentFetcher(_client(handler)).fetch("https://api.test/openapi.json")
