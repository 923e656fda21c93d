from __future__ import annotations

from dataclasses import dataclass

from compass.app.conversation.contracts import Turn

RUN_STATUS_QUEUED = "queued"
RUN_STATUS_IN_PROGRESS = "in_progress"
RUN_STATUS_CANCELLING = "cancelling"
RUN_STATUS_COMPLETED = "completed"
PENDING_RUN_STATUSES = {
    RUN_STATUS_QUEUED,
    RUN_STATUS_IN_PROGRESS,
    RUN_STATUS_CANCELLING,
}

PROBE_PENDING = "pending"
PROBE_SUCCEEDED = "succeeded"
PROBE_FAILED = "failed"

FAILURE_TRANSPORT = "transport"
FAILURE_PROVIDER = "provider"
FAILURE_CONTENT = "content"
FAILURE_RUN_STATUS = "run_status"
TRANSIENT_FAILURES = {FAILURE_TRANSPORT}

POLLING_REQUIRED = "polling_required"


@dataclass(frozen=True)
class JobHandle:
    thread_id: str
    run_id: str


@dataclass(frozen=True)
class ProbeResult:
    outcome: str
    run_status: str | None = None
    turn: Turn | None = None
    reason: str | None = None
    failure_kind: str | None = None

    @property
    def transient(self) -> bool:
        return self.outcome == PROBE_FAILED and self.failure_kind in TRANSIENT_FAILURES

    @classmethod
    def pending(cls, run_status: str | None = None) -> ProbeResult:
        return cls(outcome=PROBE_PENDING, run_status=run_status)

    @classmethod
    def succeeded(cls, turn: Turn, run_status: str | None = None) -> ProbeResult:
        return cls(outcome=PROBE_SUCCEEDED, run_status=run_status, turn=turn)

    @classmethod
    def failed(
        cls,
        reason: str,
        *,
        failure_kind: str,
        run_status: str | None = None,
    ) -> ProbeResult:
        return cls(
            outcome=PROBE_FAILED,
            run_status=run_status,
            reason=reason,
            failure_kind=failure_kind,
        )
