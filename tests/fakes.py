from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

from compass.app.conversation.contracts import Turn
from compass.app.runs.contracts import JobHandle, ProbeResult
from compass.core.config import AppConfig


def text_message(
    message_id: str, *values: str, role: str = "assistant"
) -> dict[str, Any]:
    return {
        "id": message_id,
        "object": "thread.message",
        "role": role,
        "content": [
            {"type": "text", "text": {"value": value, "annotations": []}}
            for value in values
        ],
    }


class FakeAssistantsClient:
    def __init__(
        self,
        *,
        run_statuses: Sequence[str] = ("completed",),
        messages: list[dict[str, Any]] | None = None,
        last_error: dict[str, Any] | None = None,
    ) -> None:
        self.calls: list[str] = []
        self.created_messages: list[dict[str, str]] = []
        self.assistant_ids: list[str] = []
        self.errors: dict[str, Exception] = {}
        self.messages = (
            messages if messages is not None else [text_message("msg_1", "Hello")]
        )
        self.last_error = last_error
        self.closed = False
        self._statuses = list(run_statuses)

    def _record(self, name: str) -> None:
        self.calls.append(name)
        error = self.errors.get(name)
        if error is not None:
            raise error

    async def create_thread(
        self, messages: Sequence[dict[str, str]] = ()
    ) -> dict[str, Any]:
        self._record("create_thread")
        self.created_messages.extend(dict(item) for item in messages)
        return {"id": "thread_1", "object": "thread"}

    async def create_run(self, thread_id: str, *, assistant_id: str) -> dict[str, Any]:
        self._record("create_run")
        self.assistant_ids.append(assistant_id)
        return {"id": "run_1", "thread_id": thread_id, "status": "queued"}

    async def retrieve_run(self, thread_id: str, run_id: str) -> dict[str, Any]:
        self._record("retrieve_run")
        status = self._statuses.pop(0) if len(self._statuses) > 1 else self._statuses[0]
        return {
            "id": run_id,
            "thread_id": thread_id,
            "status": status,
            "last_error": self.last_error,
        }

    async def list_messages(
        self, thread_id: str, *, limit: int = 20
    ) -> list[dict[str, Any]]:
        self._record("list_messages")
        return list(self.messages)

    async def aclose(self) -> None:
        self.closed = True


class ScriptedProbe:
    """Returns scripted results in order, repeating the last one."""

    def __init__(self, *results: ProbeResult | Exception) -> None:
        self._results = list(results)
        self.calls = 0

    async def __call__(self, handle: JobHandle) -> ProbeResult:
        self.calls += 1
        item = self._results.pop(0) if len(self._results) > 1 else self._results[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeRunGateway:
    def __init__(
        self,
        probe: ScriptedProbe,
        *,
        handle: JobHandle | None = None,
        submit_error: Exception | None = None,
    ) -> None:
        self._probe = probe
        self._handle = handle or JobHandle(thread_id="thread_1", run_id="run_1")
        self._submit_error = submit_error
        self.submitted: list[tuple[Turn, ...]] = []

    async def submit(self, conversation: Sequence[Turn]) -> JobHandle:
        self.submitted.append(tuple(conversation))
        if self._submit_error is not None:
            raise self._submit_error
        return self._handle

    async def probe(self, handle: JobHandle) -> ProbeResult:
        return await self._probe(handle)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def blocking_sleep(delay: float) -> None:
    await asyncio.Event().wait()


async def drain(predicate, rounds: int = 100) -> None:
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached while draining the event loop")


TEST_INVITE_CODE = "invite-test-code"


def make_config(**overrides) -> AppConfig:
    values: dict[str, Any] = {
        "app_name": "Compass Assistant",
        "app_version": "0.1.0",
        "environment": "test",
        "openai_api_key": "sk-test",
        "openai_base_url": "http://provider.test/v1",
        "assistant_id": "asst_test",
        "invite_code": TEST_INVITE_CODE,
        "submit_history": "latest",
        "probe_timeout_seconds": 5.0,
        "session_cookie_name": "compass_session",
        "session_max_age_seconds": 60 * 60 * 24 * 7,
    }
    values.update(overrides)
    return AppConfig(**values)
