from __future__ import annotations

import asyncio
import logging

from compass.app.conversation.contracts import Turn
from compass.app.conversation.service import Conversation, assistant_turn, user_turn
from compass.app.observability.service import emit_run_event
from compass.app.runs.errors import ChatBusyError, SubmissionError
from compass.app.runs.gateway import RunGateway
from compass.app.runs.polling import (
    PollingOrchestrator,
    PollingPolicy,
    PollState,
    ProbeScheduler,
    TurnCallback,
)

LOGGER = logging.getLogger(__name__)


def submit_failure_message(reason: str) -> str:
    return f"I'm sorry, I encountered an error: {reason}. Please try again."


class ChatSession:
    """One user's conversation: admits a single outstanding job at a time."""

    def __init__(
        self,
        gateway: RunGateway,
        *,
        policy: PollingPolicy | None = None,
        conversation: Conversation | None = None,
        on_turn: TurnCallback | None = None,
        scheduler: ProbeScheduler | None = None,
    ) -> None:
        self._gateway = gateway
        self._policy = policy or PollingPolicy()
        self._conversation = conversation or Conversation()
        self._on_turn = on_turn
        self._scheduler = scheduler
        self._busy = False
        self._closed = False
        self._active: PollingOrchestrator | None = None

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def busy(self) -> bool:
        return self._busy

    async def send(self, content: str) -> Turn | None:
        if self._closed:
            raise RuntimeError("Chat session is closed")
        if self._busy:
            raise ChatBusyError("A response is still pending for this conversation")
        if not content.strip():
            raise ValueError("Message is empty")

        self._busy = True
        try:
            self._conversation.append(user_turn(content))
            try:
                handle = await self._gateway.submit(self._conversation.turns)
            except SubmissionError as exc:
                emit_run_event("submit_failed", level=logging.ERROR, reason=str(exc))
                return await self._deliver(
                    assistant_turn(submit_failure_message(str(exc)))
                )

            if self._closed:
                return None
            orchestrator = PollingOrchestrator(
                self._gateway.probe,
                conversation=self._conversation,
                policy=self._policy,
                scheduler=self._scheduler,
                on_turn=self._on_turn,
            )
            self._active = orchestrator
            try:
                return await orchestrator.resolve(handle)
            except asyncio.CancelledError:
                if orchestrator.state is PollState.CANCELLED:
                    return None
                raise
        finally:
            self._busy = False
            self._active = None

    def teardown(self) -> None:
        self._closed = True
        if self._active is not None:
            self._active.teardown()

    async def _deliver(self, turn: Turn) -> Turn:
        self._conversation.append(turn)
        if self._on_turn is not None:
            try:
                await self._on_turn(turn)
            except Exception:
                LOGGER.exception("turn callback failed after a submit failure")
        return turn
