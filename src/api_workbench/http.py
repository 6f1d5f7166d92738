"""HTTP collaborators: the request executor and the OpenAPI document fetcher.

Both wrap an ``httpx.AsyncClient``. A client passed in is owned by the
caller; otherwise one is created lazily and closed by ``aclose()``.
"""

import logging
from contextlib import ExitStack
from pathlib import Path

import httpx
from pydantic import BaseModel

from api_workbench.config import get_settings
from api_workbench.errors import FetchError, TransportError
from api_workbench.request.payload import MultipartPayload, PreparedRequest

logger = logging.getLogger(__name__)


def create_client(timeout: float | None = None, **kwargs) -> httpx.AsyncClient:
    """Create an AsyncClient with the configured timeout and user agent."""
    settings = get_settings()
    if timeout is None:
        timeout = settings.request_timeout
    headers = {"User-Agent": settings.user_agent}
    headers.update(kwargs.pop("headers", {}))
    return httpx.AsyncClient(timeout=timeout, headers=headers, follow_redirects=True, **kwargs)


class RawResponse(BaseModel):
    status_code: int
    reason: str = ""
    headers: list[tuple[str, str]] = []
    text: str = ""

    def format(self) -> str:
        """Render as ``Status: ...`` / ``Headers:`` / ``Body:`` text."""
        status = f"{self.status_code} {self.reason}".strip()
        header_lines = "".join(f"{k}: {v}\n" for k, v in self.headers)
        return f"Status: {status}\n\nHeaders:\n{header_lines}\n\nBody:\n{self.text}"


class FetchResult(BaseModel):
    status_code: int
    content: bytes = b""
    etag: str | None = None

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304


class _ClientOwner:
    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_client()
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()


class HttpExecutor(_ClientOwner):
    """Sends prepared requests. Failures surface as TransportError."""

    async def execute(self, method: str, request: PreparedRequest, timeout: float | None = None) -> RawResponse:
        kwargs: dict = {"headers": request.headers}
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            with ExitStack() as stack:
                if isinstance(request.body, MultipartPayload):
                    kwargs["files"] = _multipart_parts(stack, request.body)
                elif request.body is not None:
                    kwargs["content"] = request.body.encode("utf-8")
                response = await self.client.request(method.upper(), request.url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(_describe(e)) from e
        except OSError as e:
            raise TransportError(f"Cannot read upload file: {e}") from e
        except (httpx.InvalidURL, ValueError) as e:
            # malformed URL or a header value httpx cannot encode
            raise TransportError(f"Invalid request: {e}") from e

        logger.debug(f"{method.upper()} {request.url} -> {response.status_code}")
        return RawResponse(
            status_code=response.status_code,
            reason=response.reason_phrase,
            headers=list(response.headers.items()),
            text=response.text,
        )


class DocumentFetcher(_ClientOwner):
    """Fetches OpenAPI documents, with ``If-None-Match`` support."""

    async def fetch(self, url: str, etag: str | None = None) -> FetchResult:
        headers = {"If-None-Match": etag} if etag else {}
        try:
            response = await self.client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch {url}: {_describe(e)}") from e

        if response.status_code == 304:
            return FetchResult(status_code=304, etag=etag)
        if not response.is_success:
            raise FetchError(f"Failed to fetch {url}: HTTP {response.status_code}", status_code=response.status_code)
        return FetchResult(
            status_code=response.status_code,
            content=response.content,
            etag=response.headers.get("etag"),
        )


def _multipart_parts(stack: ExitStack, payload: MultipartPayload) -> list:
    # text fields go in as filename-less parts so httpx always encodes multipart
    files: list = [(name, (None, value)) for name, value in payload.fields.items()]
    for file in payload.files:
        for path in file.paths:
            handle = stack.enter_context(open(path, "rb"))
            files.append((file.name, (Path(path).name or "file", handle)))
    return files


def _describe(error: httpx.HTTPError) -> str:
    text = str(error)
    return text or type(error).__name__
