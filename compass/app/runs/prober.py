from __future__ import annotations

import logging
from typing import Any, Protocol

from compass.app.conversation.contracts import ROLE_ASSISTANT
from compass.app.conversation.service import assistant_turn
from compass.app.observability.service import emit_run_event
from compass.app.runs.contracts import (
    FAILURE_CONTENT,
    FAILURE_PROVIDER,
    FAILURE_RUN_STATUS,
    FAILURE_TRANSPORT,
    PENDING_RUN_STATUSES,
    RUN_STATUS_COMPLETED,
    JobHandle,
    ProbeResult,
)
from compass.app.runs.errors import ContentError, ProviderError, TransportError

LOGGER = logging.getLogger(__name__)

NO_ASSISTANT_RESPONSE = "No response from assistant"
UNREADABLE_RESPONSE = "The assistant response could not be read"


class ProbeClient(Protocol):
    async def retrieve_run(self, thread_id: str, run_id: str) -> dict[str, Any]: ...

    async def list_messages(self, thread_id: str) -> list[dict[str, Any]]: ...


class RunStatusProber:
    """Performs a single status read for a job handle and normalizes it."""

    def __init__(self, client: ProbeClient) -> None:
        self._client = client

    async def probe(self, handle: JobHandle) -> ProbeResult:
        try:
            run = await self._client.retrieve_run(handle.thread_id, handle.run_id)
        except TransportError as exc:
            return ProbeResult.failed(str(exc), failure_kind=FAILURE_TRANSPORT)
        except ProviderError as exc:
            return ProbeResult.failed(str(exc), failure_kind=FAILURE_PROVIDER)

        status = run.get("status")
        if not isinstance(status, str) or not status:
            LOGGER.warning(
                "run %s on thread %s has no status field",
                handle.run_id,
                handle.thread_id,
            )
            return ProbeResult.failed(
                "Assistant provider returned a run without a status",
                failure_kind=FAILURE_PROVIDER,
            )

        if status in PENDING_RUN_STATUSES:
            return ProbeResult.pending(status)
        if status != RUN_STATUS_COMPLETED:
            return ProbeResult.failed(
                _terminal_status_reason(status, run.get("last_error")),
                failure_kind=FAILURE_RUN_STATUS,
                run_status=status,
            )

        try:
            messages = await self._client.list_messages(handle.thread_id)
        except TransportError as exc:
            return ProbeResult.failed(
                str(exc), failure_kind=FAILURE_TRANSPORT, run_status=status
            )
        except ProviderError as exc:
            return ProbeResult.failed(
                str(exc), failure_kind=FAILURE_PROVIDER, run_status=status
            )

        message = latest_assistant_message(messages)
        if message is None:
            return ProbeResult.failed(
                NO_ASSISTANT_RESPONSE, failure_kind=FAILURE_CONTENT, run_status=status
            )

        try:
            text = extract_message_text(message)
        except ContentError as exc:
            return ProbeResult.failed(
                str(exc), failure_kind=FAILURE_CONTENT, run_status=status
            )
        except (AttributeError, KeyError, TypeError) as exc:
            emit_run_event(
                "probe_content_unreadable",
                handle=handle,
                level=logging.ERROR,
                error_class=exc.__class__.__name__,
                error=str(exc),
            )
            return ProbeResult.failed(
                UNREADABLE_RESPONSE, failure_kind=FAILURE_CONTENT, run_status=status
            )

        message_id = message.get("id")
        turn = assistant_turn(
            text, turn_id=message_id if isinstance(message_id, str) else None
        )
        return ProbeResult.succeeded(turn, run_status=status)


def latest_assistant_message(
    messages: list[dict[str, Any]],
) -> dict[str, Any] | None:
    """Messages arrive newest first; the first assistant match wins."""
    return next(
        (message for message in messages if message.get("role") == ROLE_ASSISTANT),
        None,
    )


def extract_message_text(message: dict[str, Any]) -> str:
    content = message["content"]
    if not isinstance(content, list):
        raise TypeError(f"message content is {type(content).__name__}, not a list")
    segments: list[str] = []
    for part in content:
        if part.get("type") != "text":
            continue
        value = part["text"]["value"]
        if not isinstance(value, str):
            raise TypeError("text segment value is not a string")
        segments.append(value)
    if not segments:
        raise ContentError("Assistant response contained no text content")
    return "".join(segments)


def _terminal_status_reason(status: str, last_error: object) -> str:
    reason = f"Run ended with status: {status}"
    if isinstance(last_error, dict):
        message = last_error.get("message")
        if isinstance(message, str) and message.strip():
            return f"{reason} ({message.strip()})"
    return reason
