from dataclasses import dataclass
from typing import List

from hindsight.domain.errors import CompletionError


@dataclass(frozen=True)
class ErrorCatalogEntry:
    code: str
    title: str
    user_message: str
    http_status: int
    retryable: bool


ERROR_CATALOG: List[ErrorCatalogEntry] = [
    ErrorCatalogEntry(
        code="ERR_SPAWN_FAILED",
        title="Completion process unavailable",
        user_message="The Claude CLI could not be started. Check that it is installed and on PATH.",
        http_status=503,
        retryable=False,
    ),
    ErrorCatalogEntry(
        code="ERR_TURN_TIMEOUT",
        title="Completion timeout",
        user_message="The model did not answer in time.",
        http_status=504,
        retryable=True,
    ),
    ErrorCatalogEntry(
        code="ERR_TURN_FAILED",
        title="Completion failed",
        user_message="The model reported an error for this request.",
        http_status=502,
        retryable=True,
    ),
    ErrorCatalogEntry(
        code="ERR_PROCESS_EXITED",
        title="Completion process exited",
        user_message="The completion process stopped; it will be restarted on the next request.",
        http_status=503,
        retryable=True,
    ),
    ErrorCatalogEntry(
        code="ERR_PROVIDER_CONFIG",
        title="Provider misconfigured",
        user_message="The completion provider is missing required configuration.",
        http_status=500,
        retryable=False,
    ),
    ErrorCatalogEntry(
        code="ERR_REMOTE_API",
        title="Remote API error",
        user_message="The remote completion API request failed.",
        http_status=502,
        retryable=True,
    ),
    ErrorCatalogEntry(
        code="ERR_UNKNOWN",
        title="Unknown completion error",
        user_message="An unknown error occurred.",
        http_status=500,
        retryable=False,
    ),
]


def get_catalog_entry(code: str) -> ErrorCatalogEntry:
    for entry in ERROR_CATALOG:
        if entry.code == code:
            return entry
    return next(entry for entry in ERROR_CATALOG if entry.code == "ERR_UNKNOWN")


def describe_error(exc: BaseException) -> ErrorCatalogEntry:
    code = exc.code if isinstance(exc, CompletionError) else "ERR_UNKNOWN"
    return get_catalog_entry(code)
