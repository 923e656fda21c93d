from __future__ import annotations


class RunError(Exception):
    pass


class ProviderError(RunError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransportError(RunError):
    pass


class ContentError(RunError):
    pass


class PollingTimeoutError(RunError):
    pass


class SubmissionError(RunError):
    pass


class ChatBusyError(RunError):
    pass
