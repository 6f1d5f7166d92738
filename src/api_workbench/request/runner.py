"""Send one request and record it as a history entry."""

import logging
from typing import Protocol

from api_workbench.errors import TransportError
from api_workbench.events import HistoryEntry
from api_workbench.parser.base import Endpoint
from api_workbench.request.payload import PreparedRequest, RequestInputs, build_from_inputs

logger = logging.getLogger(__name__)


class Executor(Protocol):
    async def execute(self, method: str, request: PreparedRequest, timeout: float | None = None): ...


def format_error(error: Exception) -> str:
    return f"Error: {error}"


async def dispatch(
    executor: Executor,
    endpoint: Endpoint | None,
    inputs: RequestInputs,
    timeout: float | None = None,
) -> HistoryEntry:
    """Build and execute a request; transport failures end up in the entry, not raised."""
    snapshot = inputs.model_copy(deep=True)
    prepared = build_from_inputs(endpoint, snapshot)

    try:
        raw = await executor.execute(snapshot.method, prepared, timeout=timeout)
        response = raw.format()
    except TransportError as e:
        logger.info(f"{snapshot.method} {prepared.url} failed: {e}")
        response = format_error(e)

    return HistoryEntry(
        method=snapshot.method.upper(),
        url=snapshot.url_template,
        resolved_url=prepared.url,
        params={k: _text(v) for k, v in snapshot.param_values.items()},
        body=snapshot.body,
        body_type=snapshot.body_type,
        form_values={k: _text(v) for k, v in snapshot.form_values.items()},
        file_values=dict(snapshot.file_values),
        response=response,
    )


def _text(value) -> str:
    return "" if value is None else str(value)
