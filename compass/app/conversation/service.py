from __future__ import annotations

import time
from collections.abc import Iterable

from compass.app.conversation.contracts import (
    ROLE_ASSISTANT,
    ROLE_USER,
    TURN_ROLES,
    Turn,
)

_last_turn_stamp = 0


def new_turn_id() -> str:
    """Return an opaque id whose string order follows generation order."""
    global _last_turn_stamp
    _last_turn_stamp = max(time.time_ns(), _last_turn_stamp + 1)
    return f"turn-{_last_turn_stamp:016x}"


def user_turn(content: str) -> Turn:
    return Turn(id=new_turn_id(), role=ROLE_USER, content=content)


def assistant_turn(content: str, turn_id: str | None = None) -> Turn:
    return Turn(id=turn_id or new_turn_id(), role=ROLE_ASSISTANT, content=content)


def turns_since_last_assistant(turns: Iterable[Turn]) -> tuple[Turn, ...]:
    pending: list[Turn] = []
    for turn in turns:
        if turn.role == ROLE_ASSISTANT:
            pending.clear()
            continue
        pending.append(turn)
    return tuple(pending)


def has_user_turn(turns: Iterable[Turn]) -> bool:
    return any(turn.role == ROLE_USER for turn in turns)


class Conversation:
    """In-memory, append-only sequence of turns for one chat session."""

    def __init__(self, turns: Iterable[Turn] = ()) -> None:
        self._turns: list[Turn] = []
        for turn in turns:
            self.append(turn)

    def append(self, turn: Turn) -> None:
        if turn.role not in TURN_ROLES:
            raise ValueError(f"Unsupported turn role: {turn.role}")
        self._turns.append(turn)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def last(self) -> Turn | None:
        return self._turns[-1] if self._turns else None
