"""Anthropic Messages API backend.

Stateless: every completion is one ``POST /v1/messages`` round trip, so there
is no process, no warmup and no turn serialization. The system prompt travels
in its own ``system`` field instead of being folded into the user message.

Configuration via environment variables (or explicit constructor args):
  ANTHROPIC_API_KEY      – required
  ANTHROPIC_BASE_URL     – default: https://api.anthropic.com
  LLM_MODEL              – default: claude-sonnet-4-20250514
  LLM_MAX_TOKENS         – default: 1000
  LLM_TIMEOUT_SEC        – default: 120
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

import httpx

from hindsight.domain.contracts import ProviderState
from hindsight.domain.errors import ProviderConfigError, RemoteApiError
from hindsight.domain.stats import CompletionStats
from hindsight.observability.structured_log import log_json

from .transport import build_httpx_client, post_json_with_retries

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
_DEFAULT_MODEL = "claude-sonnet-4-20250514"
_DEFAULT_MAX_TOKENS = 1000
_DEFAULT_TIMEOUT_SEC = 120.0


class AnthropicBackend:
    """Anthropic Messages API adapter over ``httpx``."""

    mode = "api"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        timeout_sec: Optional[float] = None,
        base_url: Optional[str] = None,
        retry_attempts: int = 3,
        retry_backoff_sec: float = 0.5,
        stats: Optional[CompletionStats] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key: str = api_key if api_key is not None else (os.environ.get("ANTHROPIC_API_KEY") or "")
        self._model: str = model or _DEFAULT_MODEL
        self._max_tokens: int = max_tokens or _DEFAULT_MAX_TOKENS
        self._timeout_sec: float = float(timeout_sec or _DEFAULT_TIMEOUT_SEC)
        self._base_url: str = base_url or DEFAULT_BASE_URL
        self._retry_attempts = max(1, int(retry_attempts))
        self._retry_backoff_sec = retry_backoff_sec
        self._stats = stats if stats is not None else CompletionStats()
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._closed = False

    @property
    def state(self) -> ProviderState:
        return ProviderState.STOPPED if self._closed else ProviderState.READY

    @property
    def pid(self) -> Optional[int]:
        return None

    @property
    def stats(self) -> CompletionStats:
        return self._stats

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    def is_ready(self) -> bool:
        return not self._closed

    async def initialize(self) -> bool:
        self._closed = False
        if not self._api_key:
            logger.warning("ANTHROPIC_API_KEY is not configured; completions will fail")
        return True

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        if not self._api_key:
            self._stats.record_error()
            raise ProviderConfigError("ANTHROPIC_API_KEY not configured.")
        self._closed = False

        payload: Dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            payload["system"] = system_prompt

        started = time.monotonic()
        log_json(logger, "provider.api.start", provider="anthropic", model=self._model)
        try:
            response = await post_json_with_retries(
                self._get_http_client(),
                path="/v1/messages",
                payload=payload,
                attempts=self._retry_attempts,
                base_backoff_sec=self._retry_backoff_sec,
            )
            data = response.json()
        except httpx.HTTPStatusError as exc:
            self._stats.record_error()
            status = exc.response.status_code
            log_json(logger, "provider.api.error", level="error", provider="anthropic", status=status)
            detail = (exc.response.text or "").strip()[:300]
            raise RemoteApiError(f"Anthropic API returned {status}: {detail}", status_code=status) from exc
        except (httpx.HTTPError, ValueError) as exc:
            self._stats.record_error()
            log_json(logger, "provider.api.error", level="error", provider="anthropic", kind=type(exc).__name__)
            raise RemoteApiError(f"Anthropic API request failed: {exc}") from exc

        elapsed_ms = int(round((time.monotonic() - started) * 1000))
        self._stats.record_completion(elapsed_ms)
        log_json(logger, "provider.api.finish", provider="anthropic", model=self._model, elapsed_ms=elapsed_ms)
        return _extract_text(data)

    async def shutdown(self) -> None:
        self._closed = True
        client = self._http_client
        if client is None:
            return
        self._http_client = None
        await client.aclose()

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = build_httpx_client(
                base_url=self._base_url,
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": ANTHROPIC_VERSION,
                    "content-type": "application/json",
                },
                connect_timeout_sec=min(10.0, self._timeout_sec),
                read_timeout_sec=self._timeout_sec,
                transport=self._transport,
            )
        return self._http_client


def _extract_text(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    for block in data.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            return block.get("text") or ""
    return ""
