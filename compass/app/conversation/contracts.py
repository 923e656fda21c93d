from __future__ import annotations

from dataclasses import dataclass

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
TURN_ROLES = {ROLE_USER, ROLE_ASSISTANT}


@dataclass(frozen=True)
class Turn:
    id: str
    role: str
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"id": self.id, "role": self.role, "content": self.content}
