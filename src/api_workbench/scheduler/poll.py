"""Timed, non-overlapping requests against individual endpoints."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

from api_workbench.config import get_settings
from api_workbench.events import EventSink, PollResult, emit
from api_workbench.parser.base import Endpoint
from api_workbench.request.payload import RequestInputs
from api_workbench.request.runner import Executor, dispatch

logger = logging.getLogger(__name__)

InputsProvider = Callable[[], RequestInputs]


@dataclass
class PollState:
    endpoint_key: str
    endpoint: Endpoint
    inputs: InputsProvider
    interval_ms: int
    in_flight: bool = False
    task: asyncio.Task | None = field(default=None, repr=False)


def _check_interval(interval_ms: int) -> int:
    if interval_ms <= 0:
        raise ValueError(f"Polling interval must be positive, got {interval_ms}ms")
    return int(interval_ms)


class PollScheduler:
    """Runs one timer per polled endpoint and reports every completed request.

    A tick that finds the previous request for the same endpoint still in
    flight is skipped, not queued. Must be used from a running event loop.
    """

    def __init__(
        self,
        executor: Executor,
        sink: EventSink | None = None,
        interval_ms: int | None = None,
        timeout: float | None = None,
    ):
        self.executor = executor
        self.sink = sink
        self.interval_ms = _check_interval(interval_ms if interval_ms is not None else get_settings().poll_interval_ms)
        self.timeout = timeout
        self._states: dict[str, PollState] = {}
        # keys with a request outstanding, kept across disable()
        self._busy: set[str] = set()
        self._inflight: set[asyncio.Task] = set()

    def enable(
        self,
        endpoint: Endpoint,
        inputs: RequestInputs | InputsProvider,
        interval_ms: int | None = None,
    ) -> PollState:
        """Start polling *endpoint*: one request now, then one per interval.

        *inputs* may be a callable; it is called at each dispatch so the
        request reflects the caller's values at that moment.
        """
        interval_ms = _check_interval(interval_ms if interval_ms is not None else self.interval_ms)
        provider = inputs if callable(inputs) else _fixed(inputs)

        state = self._states.get(endpoint.key)
        if state is None:
            state = PollState(endpoint_key=endpoint.key, endpoint=endpoint, inputs=provider, interval_ms=interval_ms)
            self._states[endpoint.key] = state
        else:
            # keep the state object so an in-flight request still guards it
            self._cancel_timer(state)
            state.endpoint = endpoint
            state.inputs = provider
            state.interval_ms = interval_ms

        logger.info(f"Polling {state.endpoint_key} every {interval_ms}ms")
        self._tick(state)
        self._arm(state)
        return state

    def disable(self, key: str) -> None:
        """Stop the timer for *key*; a request already sent still completes and reports."""
        state = self._states.pop(key, None)
        if state is None:
            return
        self._cancel_timer(state)
        logger.info(f"Stopped polling {key}")

    def set_interval(self, interval_ms: int) -> None:
        """Change the shared interval and re-arm every active timer with it."""
        self.interval_ms = _check_interval(interval_ms)
        for state in self._states.values():
            self._cancel_timer(state)
            state.interval_ms = self.interval_ms
            self._arm(state)

    def is_polling(self, key: str) -> bool:
        return key in self._states

    def state(self, key: str) -> PollState | None:
        return self._states.get(key)

    @property
    def active_keys(self) -> list[str]:
        return list(self._states)

    async def close(self) -> None:
        for key in list(self._states):
            self.disable(key)
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    # -- internals ------------------------------------------------------------

    def _arm(self, state: PollState) -> None:
        state.task = asyncio.create_task(self._run_timer(state), name=f"poll:{state.endpoint_key}")

    def _cancel_timer(self, state: PollState) -> None:
        if state.task is not None:
            state.task.cancel()
            state.task = None

    async def _run_timer(self, state: PollState) -> None:
        interval = state.interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            self._tick(state)

    def _tick(self, state: PollState) -> None:
        if state.in_flight or state.endpoint_key in self._busy:
            logger.debug(f"Previous request for {state.endpoint_key} still running, skipping tick")
            return
        state.in_flight = True
        self._busy.add(state.endpoint_key)
        task = asyncio.create_task(self._dispatch(state))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _dispatch(self, state: PollState) -> None:
        try:
            inputs = state.inputs()
            entry = await dispatch(self.executor, state.endpoint, inputs, timeout=self.timeout)
        except Exception:
            logger.exception(f"Polling {state.endpoint_key} failed")
            return
        finally:
            state.in_flight = False
            self._busy.discard(state.endpoint_key)
        emit(self.sink, PollResult(endpoint_key=state.endpoint_key, entry=entry))


def _fixed(inputs: RequestInputs) -> InputsProvider:
    return lambda: inputs
