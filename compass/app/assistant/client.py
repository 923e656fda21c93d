from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from compass.app.runs.errors import ProviderError, TransportError
from compass.core.config import AppConfig

LOGGER = logging.getLogger(__name__)

ASSISTANTS_BETA_HEADER = "assistants=v2"
DEFAULT_MESSAGE_PAGE_SIZE = 20


class AssistantsClient:
    """Thin async client for the hosted assistant thread/run endpoints."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        timeout_seconds: float,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "OpenAI-Beta": ASSISTANTS_BETA_HEADER,
            "Content-Type": "application/json",
        }
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    @classmethod
    def from_config(cls, config: AppConfig) -> AssistantsClient:
        return cls(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            timeout_seconds=config.probe_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_thread(
        self, messages: Sequence[dict[str, str]] = ()
    ) -> dict[str, Any]:
        """Create a thread seeded with ``messages`` in one request."""
        return await self._request(
            "POST", "/threads", json={"messages": [dict(item) for item in messages]}
        )

    async def create_run(self, thread_id: str, *, assistant_id: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            json={"assistant_id": assistant_id},
        )

    async def retrieve_run(self, thread_id: str, run_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/threads/{thread_id}/runs/{run_id}")

    async def list_messages(
        self, thread_id: str, *, limit: int = DEFAULT_MESSAGE_PAGE_SIZE
    ) -> list[dict[str, Any]]:
        body = await self._request(
            "GET",
            f"/threads/{thread_id}/messages",
            params={"order": "desc", "limit": limit},
        )
        data = body.get("data")
        if not isinstance(data, list):
            raise ProviderError("Message list response is missing 'data'")
        return [item for item in data if isinstance(item, dict)]

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(
                method, url, headers=self._headers, json=json, params=params
            )
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"Assistant provider timed out: {method} {path}"
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(
                f"Assistant provider unreachable: {exc.__class__.__name__}"
            ) from exc

        if response.status_code >= 400:
            message = _error_message(response)
            LOGGER.warning(
                "assistant provider rejected %s %s (%s): %s",
                method,
                path,
                response.status_code,
                message,
            )
            raise ProviderError(message, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError("Assistant provider returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise ProviderError("Assistant provider returned an unexpected payload")
        return body


def _error_message(response: httpx.Response) -> str:
    fallback = f"Assistant provider returned HTTP {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback
    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    if isinstance(error, str) and error.strip():
        return error.strip()
    return fallback
