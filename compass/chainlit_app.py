from __future__ import annotations

import chainlit as cl

from compass.app.chat.service import ChatSession
from compass.app.conversation.contracts import Turn
from compass.app.runs.errors import ChatBusyError
from compass.app.runs.gateway import HttpRunGateway
from compass.app.runs.polling import PollingPolicy
from compass.core.config import load_chat_client_config

ASSISTANT_AUTHOR = "Compass"


@cl.on_chat_start
async def on_chat_start() -> None:
    config = load_chat_client_config()
    gateway = HttpRunGateway(
        config.api_url, timeout_seconds=config.request_timeout_seconds
    )
    session = ChatSession(
        gateway,
        policy=PollingPolicy.from_config(config),
        on_turn=_send_assistant_turn,
    )
    cl.user_session.set("run_gateway", gateway)
    cl.user_session.set("chat_session", session)
    await cl.Message(content=_welcome_message(), author=ASSISTANT_AUTHOR).send()


@cl.on_message
async def on_message(message: cl.Message) -> None:
    session = _resolve_chat_session(cl.user_session.get("chat_session"))
    if session is None:
        await cl.Message(content=_session_expired_message()).send()
        return

    content = message.content.strip()
    if not content:
        return
    if session.busy:
        await cl.Message(content=_busy_message()).send()
        return

    try:
        await session.send(content)
    except ChatBusyError:
        await cl.Message(content=_busy_message()).send()


@cl.on_chat_end
async def on_chat_end() -> None:
    session = _resolve_chat_session(cl.user_session.get("chat_session"))
    if session is not None:
        session.teardown()
    gateway = cl.user_session.get("run_gateway")
    if isinstance(gateway, HttpRunGateway):
        await gateway.aclose()


async def _send_assistant_turn(turn: Turn) -> None:
    await cl.Message(content=turn.content, author=ASSISTANT_AUTHOR).send()


def _resolve_chat_session(value: object) -> ChatSession | None:
    return value if isinstance(value, ChatSession) else None


def _welcome_message() -> str:
    return (
        "Welcome to Compass Assistant.\n\n"
        "- Ask a question and the assistant will answer once its run completes.\n"
        "- Answers can take a little while; you can send the next question "
        "after the current one is answered."
    )


def _busy_message() -> str:
    return "Still working on your previous question. Please wait for the answer."


def _session_expired_message() -> str:
    return "This chat session has expired. Reload the page to start again."
