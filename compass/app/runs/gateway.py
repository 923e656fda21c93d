from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

import httpx

from compass.app.conversation.contracts import TURN_ROLES, Turn
from compass.app.runs.contracts import (
    FAILURE_CONTENT,
    FAILURE_PROVIDER,
    FAILURE_TRANSPORT,
    POLLING_REQUIRED,
    JobHandle,
    ProbeResult,
)
from compass.app.runs.errors import SubmissionError

LOGGER = logging.getLogger(__name__)


class RunGateway(Protocol):
    async def submit(self, conversation: Sequence[Turn]) -> JobHandle: ...

    async def probe(self, handle: JobHandle) -> ProbeResult: ...


class HttpRunGateway:
    """Talks to the ``/submit`` and ``/status`` endpoints over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 20.0,
        cookies: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout_seconds, cookies=cookies
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def submit(self, conversation: Sequence[Turn]) -> JobHandle:
        payload = {"conversation": [turn.to_payload() for turn in conversation]}
        try:
            response = await self._client.post(f"{self._base_url}/submit", json=payload)
        except httpx.HTTPError as exc:
            raise SubmissionError(f"Submit request failed: {exc}") from exc

        body = _json_body(response)
        if response.status_code >= 400:
            raise SubmissionError(
                str(body.get("error") or f"Submit API returned {response.status_code}")
            )
        thread_id = body.get("threadId")
        run_id = body.get("runId")
        if (
            body.get("status") != POLLING_REQUIRED
            or not isinstance(thread_id, str)
            or not isinstance(run_id, str)
        ):
            raise SubmissionError("Unexpected response format")
        return JobHandle(thread_id=thread_id, run_id=run_id)

    async def probe(self, handle: JobHandle) -> ProbeResult:
        try:
            response = await self._client.post(
                f"{self._base_url}/status",
                json={"threadId": handle.thread_id, "runId": handle.run_id},
            )
        except httpx.TransportError as exc:
            return ProbeResult.failed(
                f"Status request failed: {exc.__class__.__name__}",
                failure_kind=FAILURE_TRANSPORT,
            )

        body = _json_body(response)
        if response.status_code == 503 and body.get("retryable"):
            return ProbeResult.failed(
                str(body.get("error") or "Status API unavailable"),
                failure_kind=FAILURE_TRANSPORT,
            )
        if response.status_code != 200:
            return ProbeResult.failed(
                f"Status API returned {response.status_code}",
                failure_kind=FAILURE_PROVIDER,
            )
        if not isinstance(body.get("completed"), bool):
            LOGGER.warning("status response for %s has no completion flag", handle)
            return ProbeResult.failed(
                "Status API returned an unexpected response",
                failure_kind=FAILURE_PROVIDER,
            )
        return probe_result_from_payload(body)


def probe_result_from_payload(body: dict[str, Any]) -> ProbeResult:
    status = body.get("status")
    run_status = status if isinstance(status, str) else None
    if not body.get("completed"):
        return ProbeResult.pending(run_status)

    error = body.get("error")
    if isinstance(error, str) and error:
        kind = body.get("failureKind")
        return ProbeResult.failed(
            error,
            failure_kind=kind if isinstance(kind, str) and kind else FAILURE_PROVIDER,
            run_status=run_status,
        )

    turn = _turn_from_payload(body.get("message"))
    if turn is None:
        return ProbeResult.failed(
            "No message in completed response",
            failure_kind=FAILURE_CONTENT,
            run_status=run_status,
        )
    return ProbeResult.succeeded(turn, run_status=run_status)


def _turn_from_payload(payload: object) -> Turn | None:
    if not isinstance(payload, dict):
        return None
    turn_id = payload.get("id")
    role = payload.get("role")
    content = payload.get("content")
    if not all(isinstance(value, str) for value in (turn_id, role, content)):
        return None
    if role not in TURN_ROLES:
        return None
    return Turn(id=turn_id, role=role, content=content)


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        LOGGER.warning("non-JSON response from %s", response.request.url)
        return {}
    return body if isinstance(body, dict) else {}
