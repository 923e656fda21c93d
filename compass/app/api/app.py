from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from compass.app.assistant.client import AssistantsClient
from compass.app.auth.config import load_session_settings
from compass.app.auth.session import (
    ENTRY_PATH,
    PROTECTED_PATH_PREFIX,
    SessionVerificationError,
    invite_code_matches,
    is_protected_path,
    issue_session_token,
    verify_session_token,
)
from compass.app.conversation.contracts import Turn
from compass.app.runs.contracts import (
    POLLING_REQUIRED,
    PROBE_PENDING,
    PROBE_SUCCEEDED,
    JobHandle,
)
from compass.app.runs.errors import SubmissionError
from compass.app.runs.prober import RunStatusProber
from compass.app.runs.submitter import RunSubmitter
from compass.core.config import AppConfig, load_app_config

LOGGER = logging.getLogger(__name__)


class TurnPayload(BaseModel):
    id: str = Field(min_length=1)
    role: Literal["user", "assistant"]
    content: str


class SubmitRequest(BaseModel):
    conversation: list[TurnPayload]


class StatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    thread_id: str = Field(alias="threadId", min_length=1)
    run_id: str = Field(alias="runId", min_length=1)


class InviteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invite_code: Any = Field(default=None, alias="inviteCode")


def create_app(
    config: AppConfig | None = None,
    *,
    assistants_client: AssistantsClient | None = None,
) -> FastAPI:
    config = config or load_app_config()
    session_settings = load_session_settings(config)
    client = assistants_client or AssistantsClient.from_config(config)
    submitter = RunSubmitter(
        client,
        assistant_id=config.assistant_id,
        history_policy=config.submit_history,
    )
    prober = RunStatusProber(client)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        try:
            yield
        finally:
            await client.aclose()

    app = FastAPI(title=config.app_name, version=config.app_version, lifespan=lifespan)
    app.state.config = config
    app.state.submitter = submitter
    app.state.prober = prober

    @app.middleware("http")
    async def guard_chat_routes(request: Request, call_next):
        if is_protected_path(request.url.path):
            try:
                verify_session_token(
                    request.cookies.get(session_settings.cookie_name),
                    session_settings,
                )
            except SessionVerificationError:
                return RedirectResponse(url=ENTRY_PATH, status_code=307)
        return await call_next(request)

    @app.get("/", response_class=HTMLResponse)
    async def entry() -> HTMLResponse:
        return HTMLResponse(content=_entry_page(config.app_name))

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.post("/validate-invite")
    async def validate_invite(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            LOGGER.warning("invite validation received a malformed body")
            return JSONResponse(
                content={
                    "valid": False,
                    "message": "Server error processing invite code",
                },
                status_code=400,
            )

        try:
            candidate = InviteRequest.model_validate(body).invite_code
        except ValidationError:
            candidate = None

        if not invite_code_matches(candidate, session_settings):
            return JSONResponse(
                content={"valid": False, "message": "Invalid invite code"},
                status_code=401,
            )

        response = JSONResponse(content={"valid": True, "message": "Invite code valid"})
        response.set_cookie(
            key=session_settings.cookie_name,
            value=issue_session_token(session_settings),
            max_age=session_settings.max_age_seconds,
            path="/",
            httponly=True,
            secure=session_settings.secure,
            samesite="strict",
        )
        return response

    @app.post("/logout")
    async def logout() -> JSONResponse:
        response = JSONResponse(content={"ok": True})
        response.delete_cookie(key=session_settings.cookie_name, path="/")
        return response

    @app.post("/submit")
    async def submit(payload: SubmitRequest) -> JSONResponse:
        conversation = [
            Turn(id=item.id, role=item.role, content=item.content)
            for item in payload.conversation
        ]
        try:
            handle = await submitter.submit(conversation)
        except SubmissionError as exc:
            return JSONResponse(content={"error": str(exc)}, status_code=500)
        return JSONResponse(
            content={
                "threadId": handle.thread_id,
                "runId": handle.run_id,
                "status": POLLING_REQUIRED,
            },
            status_code=202,
        )

    @app.post("/status")
    async def status(payload: StatusRequest) -> JSONResponse:
        handle = JobHandle(thread_id=payload.thread_id, run_id=payload.run_id)
        result = await prober.probe(handle)
        if result.outcome == PROBE_PENDING:
            return JSONResponse(
                content={"completed": False, "status": result.run_status}
            )
        if result.outcome == PROBE_SUCCEEDED and result.turn is not None:
            return JSONResponse(
                content={
                    "completed": True,
                    "status": result.run_status,
                    "message": result.turn.to_payload(),
                }
            )
        LOGGER.warning(
            "probe failed for thread %s run %s (%s): %s",
            handle.thread_id,
            handle.run_id,
            result.failure_kind,
            result.reason,
        )
        if result.transient:
            return JSONResponse(
                content={
                    "completed": False,
                    "error": result.reason,
                    "retryable": True,
                },
                status_code=503,
            )
        return JSONResponse(
            content={
                "completed": True,
                "status": result.run_status,
                "error": result.reason,
                "failureKind": result.failure_kind,
            }
        )

    return app


def _entry_page(app_name: str) -> str:
    return f"""<!doctype html>
<html>
  <head>
    <meta charset=\"utf-8\" />
    <meta name=\"viewport\" content=\"width=device-width,initial-scale=1\" />
    <title>{app_name}</title>
    <style>
      body {{ font-family: sans-serif; margin: 2rem; max-width: 32rem; }}
      .card {{ border: 1px solid #ddd; border-radius: 8px; padding: 1rem; }}
      .err {{ color: #9e2a2b; }}
      input {{ width: 100%; padding: 0.5rem; margin: 0.5rem 0; }}
    </style>
  </head>
  <body>
    <div class=\"card\">
      <h2>{app_name}</h2>
      <p>Enter your invite code to start chatting.</p>
      <form id=\"invite-form\">
        <input id=\"invite-code\" type=\"password\" autocomplete=\"off\" />
        <button type=\"submit\">Continue</button>
      </form>
      <p id=\"status\" class=\"err\"></p>
    </div>
    <script>
      const form = document.getElementById('invite-form');
      const statusNode = document.getElementById('status');
      form.addEventListener('submit', (event) => {{
        event.preventDefault();
        const inviteCode = document.getElementById('invite-code').value.trim();
        if (!inviteCode) {{
          statusNode.textContent = 'Please enter an invite code';
          return;
        }}
        fetch('/validate-invite', {{
          method: 'POST',
          headers: {{ 'Content-Type': 'application/json' }},
          body: JSON.stringify({{ inviteCode }}),
        }})
          .then(async (response) => {{
            const payload = await response.json();
            if (response.ok && payload.valid) {{
              window.location.href = '{PROTECTED_PATH_PREFIX}';
              return;
            }}
            statusNode.textContent = payload.message || 'Invalid invite code';
          }})
          .catch(() => {{
            statusNode.textContent = 'Something went wrong. Please try again.';
          }});
      }});
    </script>
  </body>
</html>"""
