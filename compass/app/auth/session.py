from __future__ import annotations

import hmac
import time

import jwt
from jwt import InvalidTokenError

from compass.app.auth.config import SessionSettings

SESSION_AUDIENCE = "compass-chat"
PROTECTED_PATH_PREFIX = "/chat"
ENTRY_PATH = "/"


class SessionVerificationError(Exception):
    pass


def invite_code_matches(candidate: object, settings: SessionSettings) -> bool:
    if not isinstance(candidate, str) or not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), settings.invite_code.encode())


def issue_session_token(settings: SessionSettings, *, now: int | None = None) -> str:
    issued_at = int(time.time()) if now is None else now
    claims = {
        "sub": "invitee",
        "aud": SESSION_AUDIENCE,
        "iat": issued_at,
        "exp": issued_at + settings.max_age_seconds,
    }
    return jwt.encode(claims, settings.signing_key, algorithm="HS256")


def verify_session_token(token: str | None, settings: SessionSettings) -> None:
    if not token:
        raise SessionVerificationError("Missing session cookie")
    try:
        jwt.decode(
            token,
            settings.signing_key,
            algorithms=["HS256"],
            audience=SESSION_AUDIENCE,
            options={"require": ["exp", "aud", "sub"]},
        )
    except InvalidTokenError as exc:
        raise SessionVerificationError("Invalid or expired session") from exc


def is_protected_path(path: str) -> bool:
    return path == PROTECTED_PATH_PREFIX or path.startswith(f"{PROTECTED_PATH_PREFIX}/")
