from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from compass.app.conversation.contracts import ROLE_USER, Turn
from compass.app.conversation.service import has_user_turn, turns_since_last_assistant
from compass.app.observability.service import emit_run_event
from compass.app.runs.contracts import JobHandle
from compass.app.runs.errors import RunError, SubmissionError
from compass.core.config import SUBMIT_HISTORY_FULL, SUBMIT_HISTORY_LATEST

LOGGER = logging.getLogger(__name__)


class SubmitClient(Protocol):
    async def create_thread(
        self, messages: Sequence[dict[str, str]] = ()
    ) -> dict[str, Any]: ...

    async def create_run(
        self, thread_id: str, *, assistant_id: str
    ) -> dict[str, Any]: ...


class RunSubmitter:
    """Creates a thread and enqueues a run, returning before the run finishes."""

    def __init__(
        self,
        client: SubmitClient,
        *,
        assistant_id: str,
        history_policy: str = SUBMIT_HISTORY_LATEST,
    ) -> None:
        self._client = client
        self._assistant_id = assistant_id
        self._history_policy = history_policy

    async def submit(self, conversation: Sequence[Turn]) -> JobHandle:
        if not has_user_turn(conversation):
            raise SubmissionError("Conversation has no user turn to submit")
        outgoing = select_outgoing_turns(conversation, self._history_policy)
        if not outgoing:
            raise SubmissionError("Conversation has no new user turn to submit")

        try:
            thread = await self._client.create_thread(
                [{"role": turn.role, "content": turn.content} for turn in outgoing]
            )
            thread_id = _require_id(thread, "thread")
            run = await self._client.create_run(
                thread_id, assistant_id=self._assistant_id
            )
            run_id = _require_id(run, "run")
        except RunError as exc:
            LOGGER.error("run submission failed: %s", exc)
            raise SubmissionError(str(exc)) from exc

        handle = JobHandle(thread_id=thread_id, run_id=run_id)
        emit_run_event(
            "run_submitted",
            handle=handle,
            message_count=len(outgoing),
            history_policy=self._history_policy,
            run_status=run.get("status"),
        )
        return handle


def select_outgoing_turns(
    conversation: Sequence[Turn], history_policy: str
) -> tuple[Turn, ...]:
    if history_policy == SUBMIT_HISTORY_FULL:
        return tuple(turn for turn in conversation if turn.content.strip())
    return tuple(
        turn
        for turn in turns_since_last_assistant(conversation)
        if turn.role == ROLE_USER and turn.content.strip()
    )


def _require_id(payload: dict[str, Any], kind: str) -> str:
    value = payload.get("id")
    if not isinstance(value, str) or not value:
        raise SubmissionError(f"Assistant provider returned a {kind} without an id")
    return value
