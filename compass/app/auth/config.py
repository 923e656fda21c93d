from __future__ import annotations

import hashlib
from dataclasses import dataclass

from compass.core.config import AppConfig


@dataclass(frozen=True)
class SessionSettings:
    invite_code: str
    cookie_name: str
    max_age_seconds: int
    secure: bool

    @property
    def signing_key(self) -> str:
        seed = f"compass-session:{self.invite_code}"
        return hashlib.sha256(seed.encode()).hexdigest()


def load_session_settings(config: AppConfig) -> SessionSettings:
    return SessionSettings(
        invite_code=config.invite_code,
        cookie_name=config.session_cookie_name,
        max_age_seconds=config.session_max_age_seconds,
        secure=config.secure_cookies,
    )
