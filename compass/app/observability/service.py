from __future__ import annotations

import json
import logging
from typing import Any

from compass.app.runs.contracts import JobHandle

LOGGER = logging.getLogger(__name__)


def emit_run_event(
    event: str,
    *,
    handle: JobHandle | None = None,
    attempt: int | None = None,
    level: int = logging.INFO,
    logger: logging.Logger | None = None,
    **fields: Any,
) -> None:
    active_logger = logger or LOGGER
    payload: dict[str, Any] = {
        "event": event,
        "thread_id": handle.thread_id if handle else None,
        "run_id": handle.run_id if handle else None,
        "attempt": attempt,
        **fields,
    }
    active_logger.log(level, "run_event %s", json.dumps(payload, sort_keys=True))
