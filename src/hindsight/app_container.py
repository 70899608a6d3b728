from typing import Callable, Dict

from hindsight.config import LLMConfig
from hindsight.domain.contracts import CompletionBackend
from hindsight.domain.stats import CompletionStats
from hindsight.providers.anthropic_provider import AnthropicBackend
from hindsight.providers.claude_persistent import PersistentClaudeBackend
from hindsight.providers.completion import CompletionProvider


BackendFactory = Callable[[LLMConfig, CompletionStats], CompletionBackend]


def _build_persistent_backend(config: LLMConfig, stats: CompletionStats) -> CompletionBackend:
    return PersistentClaudeBackend(
        model=config.model,
        cli_path=config.cli_path,
        turn_timeout_sec=config.turn_timeout_sec,
        warmup_grace_sec=config.warmup_grace_sec,
        warmup_prompt=config.warmup_prompt,
        shutdown_grace_sec=config.shutdown_grace_sec,
        shutdown_deadline_sec=config.shutdown_deadline_sec,
        stats=stats,
    )


def _build_api_backend(config: LLMConfig, stats: CompletionStats) -> CompletionBackend:
    return AnthropicBackend(
        api_key=config.api_key,
        model=config.model,
        max_tokens=config.max_tokens,
        timeout_sec=config.turn_timeout_sec,
        base_url=config.api_base_url or None,
        stats=stats,
    )


BACKEND_FACTORIES: Dict[str, BackendFactory] = {
    "persistent": _build_persistent_backend,
    "api": _build_api_backend,
}


def build_completion_provider(config: LLMConfig) -> CompletionProvider:
    mode = (config.mode or "").strip().lower()
    factory = BACKEND_FACTORIES.get(mode)
    if factory is None:
        supported = ", ".join(sorted(BACKEND_FACTORIES))
        raise ValueError(f"Unknown LLM mode: {config.mode!r}. Supported modes: {supported}")
    stats = CompletionStats()
    backend = factory(config, stats)
    return CompletionProvider(
        backend=backend,
        model=config.model,
        stats=stats,
        api_key_configured=bool(config.api_key),
    )
