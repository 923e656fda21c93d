from __future__ import annotations

import asyncio
import logging

import pytest

from compass.app.conversation.service import Conversation, assistant_turn, user_turn
from compass.app.runs.contracts import JobHandle, ProbeResult
from compass.app.runs.errors import (
    ContentError,
    PollingTimeoutError,
    ProviderError,
    TransportError,
)
from compass.app.runs.polling import (
    TIMEOUT_MESSAGE,
    PollingOrchestrator,
    PollingPolicy,
    PollState,
    ProbeScheduler,
)
from tests.fakes import RecordingSleep, ScriptedProbe, blocking_sleep, drain

HANDLE = JobHandle(thread_id="thread_1", run_id="run_1")


def _orchestrator(
    probe: ScriptedProbe,
    *,
    sleep=None,
    policy: PollingPolicy | None = None,
    on_turn=None,
) -> tuple[PollingOrchestrator, Conversation, RecordingSleep]:
    recorder = RecordingSleep()
    conversation = Conversation([user_turn("question")])
    orchestrator = PollingOrchestrator(
        probe,
        conversation=conversation,
        policy=policy,
        scheduler=ProbeScheduler(sleep=sleep or recorder),
        on_turn=on_turn,
    )
    return orchestrator, conversation, recorder


def test_delay_grows_linearly_and_is_capped() -> None:
    policy = PollingPolicy()

    delays = [policy.delay_for(attempt) for attempt in range(1, 8)]

    assert delays == [2.5, 3.0, 3.5, 4.0, 4.5, 5.0, 5.0]


@pytest.mark.asyncio
async def test_pending_then_success_delivers_exactly_one_turn() -> None:
    answer = assistant_turn("Here is the answer", turn_id="msg_1")
    probe = ScriptedProbe(
        ProbeResult.pending("queued"),
        ProbeResult.pending("in_progress"),
        ProbeResult.succeeded(answer, run_status="completed"),
    )
    orchestrator, conversation, recorder = _orchestrator(probe)

    turn = await orchestrator.resolve(HANDLE)

    assert turn == answer
    assert orchestrator.state is PollState.DELIVERED
    assert orchestrator.attempts == 3
    assert recorder.delays == [2.5, 3.0]
    assert conversation.turns[-1] == answer
    assert len(conversation) == 2


@pytest.mark.asyncio
async def test_first_probe_fires_immediately() -> None:
    probe = ScriptedProbe(ProbeResult.succeeded(assistant_turn("done")))
    orchestrator, _, recorder = _orchestrator(probe)

    await orchestrator.resolve(HANDLE)

    assert probe.calls == 1
    assert recorder.delays == []


@pytest.mark.asyncio
async def test_timeout_appends_fallback_once_and_stops_probing() -> None:
    probe = ScriptedProbe(ProbeResult.pending("in_progress"))
    orchestrator, conversation, recorder = _orchestrator(
        probe, policy=PollingPolicy(max_attempts=3)
    )

    turn = await orchestrator.resolve(HANDLE)
    for _ in range(10):
        await asyncio.sleep(0)

    assert turn.content == TIMEOUT_MESSAGE
    assert orchestrator.state is PollState.TIMED_OUT
    assert isinstance(orchestrator.error, PollingTimeoutError)
    assert probe.calls == 3
    assert recorder.delays == [2.5, 3.0]
    assert [t.content for t in conversation.turns].count(TIMEOUT_MESSAGE) == 1


@pytest.mark.asyncio
async def test_transient_failure_retries_after_fixed_delay() -> None:
    answer = assistant_turn("recovered")
    probe = ScriptedProbe(
        ProbeResult.failed("provider unreachable", failure_kind="transport"),
        ProbeResult.succeeded(answer),
    )
    orchestrator, _, recorder = _orchestrator(probe)

    turn = await orchestrator.resolve(HANDLE)

    assert turn == answer
    assert recorder.delays == [5.0]


@pytest.mark.asyncio
async def test_probe_raising_transport_error_is_retried() -> None:
    answer = assistant_turn("recovered")
    probe = ScriptedProbe(
        TransportError("connection reset"), ProbeResult.succeeded(answer)
    )
    orchestrator, _, recorder = _orchestrator(probe)

    turn = await orchestrator.resolve(HANDLE)

    assert turn == answer
    assert recorder.delays == [5.0]


@pytest.mark.asyncio
async def test_transient_failures_still_count_toward_the_ceiling() -> None:
    probe = ScriptedProbe(
        ProbeResult.failed("provider unreachable", failure_kind="transport")
    )
    orchestrator, _, _ = _orchestrator(probe, policy=PollingPolicy(max_attempts=2))

    turn = await orchestrator.resolve(HANDLE)

    assert turn.content == TIMEOUT_MESSAGE
    assert probe.calls == 2


@pytest.mark.asyncio
async def test_terminal_failure_delivers_one_error_turn() -> None:
    probe = ScriptedProbe(
        ProbeResult.failed(
            "Run ended with status: failed",
            failure_kind="run_status",
            run_status="failed",
        )
    )
    orchestrator, conversation, recorder = _orchestrator(probe)

    turn = await orchestrator.resolve(HANDLE)

    assert orchestrator.state is PollState.FAILED
    assert isinstance(orchestrator.error, ProviderError)
    assert "Run ended with status: failed" in turn.content
    assert turn.role == "assistant"
    assert probe.calls == 1
    assert recorder.delays == []
    assert len(conversation) == 2


@pytest.mark.asyncio
async def test_content_failure_is_reported_as_content_error() -> None:
    probe = ScriptedProbe(
        ProbeResult.failed("No response from assistant", failure_kind="content")
    )
    orchestrator, _, _ = _orchestrator(probe)

    turn = await orchestrator.resolve(HANDLE)

    assert isinstance(orchestrator.error, ContentError)
    assert "No response from assistant" in turn.content


@pytest.mark.asyncio
async def test_unexpected_probe_exception_becomes_error_turn() -> None:
    probe = ScriptedProbe(RuntimeError("boom"))
    orchestrator, _, _ = _orchestrator(probe)

    turn = await orchestrator.resolve(HANDLE)

    assert orchestrator.state is PollState.FAILED
    assert "Unexpected error (RuntimeError)" in turn.content


@pytest.mark.asyncio
async def test_teardown_cancels_pending_probe_without_appending() -> None:
    probe = ScriptedProbe(ProbeResult.pending("in_progress"))
    orchestrator, conversation, _ = _orchestrator(probe, sleep=blocking_sleep)

    result = orchestrator.start(HANDLE)
    await drain(lambda: probe.calls == 1)
    await asyncio.sleep(0)
    orchestrator.teardown()

    with pytest.raises(asyncio.CancelledError):
        await result
    for _ in range(10):
        await asyncio.sleep(0)

    assert orchestrator.state is PollState.CANCELLED
    assert probe.calls == 1
    assert len(conversation) == 1


@pytest.mark.asyncio
async def test_start_twice_is_rejected() -> None:
    probe = ScriptedProbe(ProbeResult.pending("queued"))
    orchestrator, _, _ = _orchestrator(probe, sleep=blocking_sleep)

    orchestrator.start(HANDLE)
    with pytest.raises(RuntimeError):
        orchestrator.start(HANDLE)
    orchestrator.teardown()


@pytest.mark.asyncio
async def test_on_turn_callback_receives_the_delivered_turn_once() -> None:
    delivered = []

    async def on_turn(turn) -> None:
        delivered.append(turn)

    answer = assistant_turn("hello")
    probe = ScriptedProbe(ProbeResult.pending("queued"), ProbeResult.succeeded(answer))
    orchestrator, _, _ = _orchestrator(probe, on_turn=on_turn)

    await orchestrator.resolve(HANDLE)

    assert delivered == [answer]


@pytest.mark.asyncio
async def test_run_events_carry_handle_and_attempt(caplog) -> None:
    probe = ScriptedProbe(
        ProbeResult.pending("queued"), ProbeResult.succeeded(assistant_turn("ok"))
    )
    orchestrator, _, _ = _orchestrator(probe)

    with caplog.at_level(logging.DEBUG):
        await orchestrator.resolve(HANDLE)

    delivered = [m for m in caplog.messages if '"event": "run_delivered"' in m]
    assert len(delivered) == 1
    assert '"attempt": 2' in delivered[0]
    assert '"thread_id": "thread_1"' in delivered[0]
    assert '"run_id": "run_1"' in delivered[0]


@pytest.mark.asyncio
async def test_scheduler_keeps_a_single_timer() -> None:
    fired = []
    scheduler = ProbeScheduler(sleep=blocking_sleep)

    async def callback() -> None:
        fired.append(True)

    scheduler.schedule(10, callback)
    scheduler.schedule(10, callback)
    assert scheduler.armed

    scheduler.cancel()
    await asyncio.sleep(0)

    assert not scheduler.armed
    assert fired == []
