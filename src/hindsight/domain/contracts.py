from enum import Enum
from typing import Optional, Protocol

PROMPT_SEPARATOR = "\n\n---\n\n"


class ProviderState(str, Enum):
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    READY = "READY"
    BUSY = "BUSY"
    ERROR = "ERROR"


class CompletionBackend(Protocol):
    mode: str

    @property
    def state(self) -> ProviderState:
        ...

    @property
    def pid(self) -> Optional[int]:
        ...

    async def initialize(self) -> bool:
        ...

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        ...

    async def shutdown(self) -> None:
        ...


def combine_prompt(prompt: str, system_prompt: Optional[str] = None) -> str:
    """Fold a system preamble into a single user message for single-channel backends."""
    if not system_prompt:
        return prompt
    return f"{system_prompt}{PROMPT_SEPARATOR}{prompt}"
