"""CLI entry point for api-workbench."""

import asyncio
import logging
from pathlib import Path

import click

from api_workbench.config import POLL_INTERVAL_CHOICES, get_settings
from api_workbench.errors import WorkbenchError
from api_workbench.events import CollectionUpdated, PollResult, SyncStatusChanged
from api_workbench.http import DocumentFetcher, HttpExecutor
from api_workbench.parser.base import JSON_MEDIA_TYPE, Collection, Endpoint
from api_workbench.parser.openapi import endpoint_label, normalize, sort_endpoints
from api_workbench.request.payload import RequestInputs
from api_workbench.request.runner import dispatch
from api_workbench.scheduler.poll import PollScheduler
from api_workbench.scheduler.sync import SyncScheduler, import_collection


async def _load_collection(source: str) -> tuple[Collection, str | None]:
    """Import from a local file or an URL."""
    path = Path(source)
    if path.is_file():
        return normalize(path.read_bytes(), str(path), max_depth=get_settings().max_schema_depth), None
    async with DocumentFetcher() as fetcher:
        return await import_collection(fetcher, source)


def _run(coro):
    try:
        return asyncio.run(coro)
    except WorkbenchError as e:
        raise click.ClickException(str(e)) from e


def _pairs(values: tuple[str, ...], option: str) -> dict[str, str]:
    result = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected NAME=VALUE, got {item!r}", param_hint=option)
        result[name] = value
    return result


def _file_pairs(values: tuple[str, ...]) -> dict[str, list[str]]:
    # the same field may be given several times for multi-file uploads
    result: dict[str, list[str]] = {}
    for item in values:
        for name, value in _pairs((item,), "--file").items():
            result.setdefault(name, []).append(value)
    return result


def _resolve_target(collection: Collection, method: str, path: str, base_url: str | None) -> tuple[Endpoint | None, str]:
    endpoint = collection.find(method, path)
    if base_url:
        return endpoint, f"{base_url.rstrip('/')}{path}"
    if endpoint is not None:
        return endpoint, collection.endpoint_url(endpoint)
    return None, f"{collection.base_url}{path}"


def _build_inputs(method, url, params, body, body_type, form, files) -> RequestInputs:
    return RequestInputs(
        method=method.upper(),
        url_template=url,
        param_values=_pairs(params, "--param"),
        body=body or "",
        body_type=body_type,
        form_values=_pairs(form, "--form"),
        file_values=_file_pairs(files),
    )


request_options = [
    click.option("-p", "--param", "params", multiple=True, help="Parameter value as NAME=VALUE."),
    click.option("--body", default=None, help="Raw request body."),
    click.option("--body-type", default=JSON_MEDIA_TYPE, show_default=True, help="Body media type."),
    click.option("--form", multiple=True, help="Form field as NAME=VALUE."),
    click.option("--file", "files", multiple=True, help="Upload field as NAME=PATH (repeatable)."),
    click.option("--base-url", default=None, help="Override the document's server URL."),
    click.option("--timeout", default=None, type=float, help="Per-request timeout in seconds."),
]


def with_request_options(func):
    for option in reversed(request_options):
        func = option(func)
    return func


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """API Workbench: import OpenAPI documents and call the described API."""
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@main.command()
@click.argument("source")
@click.option("--json", "as_json", is_flag=True, help="Print the normalized collection as JSON.")
def inspect(source: str, as_json: bool):
    """List the endpoints described by an OpenAPI document (URL or file)."""
    collection, _ = _run(_load_collection(source))
    if as_json:
        click.echo(collection.model_dump_json(indent=2, by_alias=True))
        return

    count = sum(len(eps) for eps in collection.groups.values())
    click.echo(f"{collection.name} ({count} endpoints)")
    if collection.base_url:
        click.echo(f"Server: {collection.base_url}")
    for tag, endpoints in collection.groups.items():
        click.echo(f"\n[{tag}]")
        for ep in sort_endpoints(endpoints):
            click.echo(f"  {ep.method:<7} {ep.path}  {endpoint_label(ep)}")


@main.command()
@click.argument("source")
@click.argument("method")
@click.argument("path")
@with_request_options
def send(source, method, path, params, body, body_type, form, files, base_url, timeout):
    """Send one request to METHOD PATH of the API described by SOURCE."""

    async def _send():
        collection, _ = await _load_collection(source)
        endpoint, url = _resolve_target(collection, method, path, base_url)
        inputs = _build_inputs(method, url, params, body, body_type, form, files)
        async with HttpExecutor() as executor:
            return await dispatch(executor, endpoint, inputs, timeout=timeout)

    entry = _run(_send())
    click.echo(f"{entry.method} {entry.resolved_url}")
    click.echo(entry.response)
    if entry.failed:
        raise SystemExit(1)


@main.command()
@click.argument("source")
@click.argument("method")
@click.argument("path")
@with_request_options
@click.option(
    "--interval",
    default=str(POLL_INTERVAL_CHOICES[1] // 1000),
    type=click.Choice([str(ms // 1000) for ms in POLL_INTERVAL_CHOICES]),
    show_default=True,
    help="Seconds between requests.",
)
@click.option("--count", default=0, type=int, help="Stop after this many results (0 = run until interrupted).")
def poll(source, method, path, params, body, body_type, form, files, base_url, timeout, interval, count):
    """Poll METHOD PATH and print every response."""

    async def _poll():
        collection, _ = await _load_collection(source)
        endpoint, url = _resolve_target(collection, method, path, base_url)
        if endpoint is None:
            raise click.ClickException(f"No endpoint {method.upper()} {path} in {collection.name}")
        inputs = _build_inputs(method, url, params, body, body_type, form, files)
        done = asyncio.Event()
        seen = 0

        def on_event(event):
            nonlocal seen
            if isinstance(event, PollResult):
                seen += 1
                click.echo(f"--- #{seen} {event.entry.method} {event.entry.resolved_url}")
                click.echo(event.entry.response)
                if count and seen >= count:
                    done.set()

        async with HttpExecutor() as executor:
            scheduler = PollScheduler(executor, on_event, interval_ms=int(interval) * 1000, timeout=timeout)
            scheduler.enable(endpoint, inputs)
            try:
                await done.wait()
            finally:
                await scheduler.close()

    _run(_poll())


@main.command()
@click.argument("url")
@click.option("--interval", default=None, type=float, help="Seconds between sync checks.")
@click.option("--count", default=0, type=int, help="Stop after this many updates (0 = run until interrupted).")
def watch(url: str, interval: float | None, count: int):
    """Keep the collection at URL in sync and report changes."""

    async def _watch():
        collections: dict[str, Collection] = {}
        done = asyncio.Event()
        updates = 0

        def on_event(event):
            nonlocal updates
            if isinstance(event, SyncStatusChanged):
                click.echo(f"{event.timestamp:%H:%M:%S} {event.url}: {event.status}")
            elif isinstance(event, CollectionUpdated):
                updates += 1
                total = sum(len(eps) for eps in event.collection.groups.values())
                click.echo(f"Updated: {event.collection.name} ({total} endpoints)")
                if count and updates >= count:
                    done.set()

        async with DocumentFetcher() as fetcher:
            collection, etag = await import_collection(fetcher, url)
            click.echo(f"Imported: {collection.name}")
            scheduler = SyncScheduler(fetcher, collections, on_event, interval=interval)
            scheduler.add(collection, etag)
            try:
                await done.wait()
            finally:
                await scheduler.close()

    _run(_watch())
