"""Failure kinds raised by the completion providers.

Each class carries a stable ``code`` so the HTTP layer and logs can refer to a
failure without string matching on messages.
"""


class CompletionError(Exception):
    code = "ERR_UNKNOWN"


class SpawnFailure(CompletionError):
    """The completion subprocess could not be started."""

    code = "ERR_SPAWN_FAILED"


class TurnTimeout(CompletionError):
    """A turn did not finish in time. The subprocess is left running."""

    code = "ERR_TURN_TIMEOUT"


class TurnError(CompletionError):
    """The subprocess reported a failure for the current turn."""

    code = "ERR_TURN_FAILED"


class ProcessExited(CompletionError):
    """The backing process is gone, possibly while a turn was open."""

    code = "ERR_PROCESS_EXITED"

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class ProviderConfigError(CompletionError):
    code = "ERR_PROVIDER_CONFIG"


class RemoteApiError(CompletionError):
    code = "ERR_REMOTE_API"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
