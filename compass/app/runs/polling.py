from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from compass.app.conversation.contracts import Turn
from compass.app.conversation.service import Conversation, assistant_turn
from compass.app.observability.service import emit_run_event
from compass.app.runs.contracts import (
    FAILURE_CONTENT,
    FAILURE_PROVIDER,
    FAILURE_TRANSPORT,
    PROBE_PENDING,
    PROBE_SUCCEEDED,
    JobHandle,
    ProbeResult,
)
from compass.app.runs.errors import (
    ContentError,
    PollingTimeoutError,
    ProviderError,
    RunError,
    TransportError,
)
from compass.core.config import ChatClientConfig

LOGGER = logging.getLogger(__name__)

TIMEOUT_MESSAGE = (
    "I'm sorry, but it's taking me longer than expected to respond. "
    "Please try again or ask a different question."
)

ProbeFn = Callable[[JobHandle], Awaitable[ProbeResult]]
SleepFn = Callable[[float], Awaitable[None]]
TurnCallback = Callable[[Turn], Awaitable[None]]


def failure_message(reason: str) -> str:
    return (
        "I'm sorry, I encountered an error while processing your request: "
        f"{reason}. Please try again."
    )


class PollState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    DELIVERED = "delivered"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_POLL_STATES = {
    PollState.DELIVERED,
    PollState.TIMED_OUT,
    PollState.FAILED,
    PollState.CANCELLED,
}


@dataclass(frozen=True)
class PollingPolicy:
    max_attempts: int = 120
    initial_delay_seconds: float = 2.5
    delay_step_seconds: float = 0.5
    max_delay_seconds: float = 5.0
    transient_retry_seconds: float = 5.0

    @classmethod
    def from_config(cls, config: ChatClientConfig) -> PollingPolicy:
        return cls(
            max_attempts=config.poll_max_attempts,
            initial_delay_seconds=config.poll_initial_delay_seconds,
            delay_step_seconds=config.poll_delay_step_seconds,
            max_delay_seconds=config.poll_max_delay_seconds,
            transient_retry_seconds=config.poll_transient_retry_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before the probe that follows ``attempt`` (1-based)."""
        steps = max(attempt - 1, 0)
        grown = self.initial_delay_seconds + steps * self.delay_step_seconds
        return min(grown, self.max_delay_seconds)


class ProbeScheduler:
    """Single-flight, cancellable timer for the next probe."""

    def __init__(self, *, sleep: SleepFn = asyncio.sleep) -> None:
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        self.cancel()
        self._task = asyncio.create_task(
            self._fire(delay, callback), name="compass-probe"
        )

    def cancel(self) -> None:
        task = self._task
        self._task = None
        # A callback may re-arm or stop the timer from inside its own task.
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()

    async def _fire(
        self, delay: float, callback: Callable[[], Awaitable[None]]
    ) -> None:
        if delay > 0:
            await self._sleep(delay)
        await callback()


class PollingOrchestrator:
    """Drives one job handle from submission to exactly one delivered turn.

    The orchestrator is the only writer of the resulting turn: a success,
    a timeout fallback or an error summary is appended to the conversation
    once, and nothing is appended after ``teardown``.
    """

    def __init__(
        self,
        probe: ProbeFn,
        *,
        conversation: Conversation,
        policy: PollingPolicy | None = None,
        scheduler: ProbeScheduler | None = None,
        on_turn: TurnCallback | None = None,
    ) -> None:
        self._probe = probe
        self._conversation = conversation
        self._policy = policy or PollingPolicy()
        self._scheduler = scheduler or ProbeScheduler()
        self._on_turn = on_turn
        self._state = PollState.IDLE
        self._attempts = 0
        self._handle: JobHandle | None = None
        self._result: asyncio.Future[Turn] | None = None
        self.error: RunError | None = None

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def handle(self) -> JobHandle | None:
        return self._handle

    def start(self, handle: JobHandle) -> asyncio.Future[Turn]:
        if self._state is not PollState.IDLE:
            raise RuntimeError(f"Polling already {self._state.value} for this handle")
        self._handle = handle
        self._state = PollState.POLLING
        self._result = asyncio.get_running_loop().create_future()
        emit_run_event("polling_started", handle=handle, attempt=0)
        self._scheduler.schedule(0, self._probe_once)
        return self._result

    async def resolve(self, handle: JobHandle) -> Turn:
        return await self.start(handle)

    def teardown(self) -> None:
        if self._state in TERMINAL_POLL_STATES:
            return
        self._scheduler.cancel()
        previous = self._state
        self._state = PollState.CANCELLED
        if previous is PollState.POLLING:
            emit_run_event("run_cancelled", handle=self._handle, attempt=self._attempts)
        if self._result is not None and not self._result.done():
            self._result.cancel()

    async def _probe_once(self) -> None:
        if self._state is not PollState.POLLING or self._handle is None:
            return
        self._attempts += 1
        attempt = self._attempts
        try:
            result = await self._probe(self._handle)
        except TransportError as exc:
            result = ProbeResult.failed(str(exc), failure_kind=FAILURE_TRANSPORT)
        except RunError as exc:
            result = ProbeResult.failed(str(exc), failure_kind=FAILURE_PROVIDER)
        except Exception as exc:
            LOGGER.exception("probe raised unexpectedly for %s", self._handle)
            result = ProbeResult.failed(
                f"Unexpected error ({exc.__class__.__name__})",
                failure_kind=FAILURE_PROVIDER,
            )

        if self._state is not PollState.POLLING:
            return

        if result.outcome == PROBE_SUCCEEDED and result.turn is not None:
            emit_run_event(
                "run_delivered",
                handle=self._handle,
                attempt=attempt,
                run_status=result.run_status,
            )
            await self._finish(PollState.DELIVERED, result.turn)
            return

        if result.outcome == PROBE_PENDING:
            emit_run_event(
                "probe_pending",
                handle=self._handle,
                attempt=attempt,
                level=logging.DEBUG,
                run_status=result.run_status,
            )
            await self._reschedule(self._policy.delay_for(attempt))
            return

        reason = result.reason or "Unknown error"
        emit_run_event(
            "probe_failed",
            handle=self._handle,
            attempt=attempt,
            level=logging.WARNING,
            failure_kind=result.failure_kind,
            reason=reason,
            transient=result.transient,
        )
        if result.transient:
            await self._reschedule(self._policy.transient_retry_seconds)
            return

        self.error = _error_for(result)
        emit_run_event(
            "run_failed",
            handle=self._handle,
            attempt=attempt,
            level=logging.ERROR,
            failure_kind=result.failure_kind,
            reason=reason,
        )
        await self._finish(PollState.FAILED, assistant_turn(failure_message(reason)))

    async def _reschedule(self, delay: float) -> None:
        if self._attempts >= self._policy.max_attempts:
            self.error = PollingTimeoutError(
                f"Run did not finish after {self._attempts} attempts"
            )
            emit_run_event(
                "run_timed_out",
                handle=self._handle,
                attempt=self._attempts,
                level=logging.ERROR,
                max_attempts=self._policy.max_attempts,
            )
            await self._finish(PollState.TIMED_OUT, assistant_turn(TIMEOUT_MESSAGE))
            return
        self._scheduler.schedule(delay, self._probe_once)

    async def _finish(self, state: PollState, turn: Turn) -> None:
        if self._state is not PollState.POLLING:
            return
        self._state = state
        self._scheduler.cancel()
        self._conversation.append(turn)
        if self._result is not None and not self._result.done():
            self._result.set_result(turn)
        if self._on_turn is not None:
            try:
                await self._on_turn(turn)
            except Exception:
                LOGGER.exception("turn callback failed for %s", self._handle)


def _error_for(result: ProbeResult) -> RunError:
    reason = result.reason or "Unknown error"
    if result.failure_kind == FAILURE_CONTENT:
        return ContentError(reason)
    return ProviderError(reason)
