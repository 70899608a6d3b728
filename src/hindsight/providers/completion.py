"""Completion façade used by the rest of the service.

Callers see one API regardless of the backend picked at construction time:
the persistent Claude CLI process or the stateless Anthropic API.

Usage::

    provider = build_completion_provider(LLMConfig(mode="persistent"))
    await provider.initialize()
    text = await provider.complete(prompt, system_prompt)
    await provider.shutdown()
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from hindsight.domain.contracts import CompletionBackend, ProviderState
from hindsight.domain.stats import CompletionStats

logger = logging.getLogger(__name__)


class CompletionProvider:
    def __init__(
        self,
        backend: CompletionBackend,
        model: str,
        stats: CompletionStats,
        api_key_configured: bool = False,
    ) -> None:
        self._backend = backend
        self._model = model
        self._stats = stats
        self._api_key_configured = api_key_configured
        logger.info("Completion provider initialized in %s mode with model %s", backend.mode, model)

    @property
    def mode(self) -> str:
        return self._backend.mode

    @property
    def model(self) -> str:
        return self._model

    @property
    def backend(self) -> CompletionBackend:
        return self._backend

    @property
    def state(self) -> ProviderState:
        return self._backend.state

    async def initialize(self) -> bool:
        return await self._backend.initialize()

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        return await self._backend.complete(prompt, system_prompt or None)

    async def shutdown(self) -> None:
        await self._backend.shutdown()

    def is_ready(self) -> bool:
        return self._backend.state is ProviderState.READY

    def get_stats(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "model": self._model,
            "state": self.state.value,
            **self._stats.snapshot(),
        }

    def get_info(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "model": self._model,
            "state": self.state.value,
            "has_api_key": self._api_key_configured,
            "pid": self._backend.pid,
        }
