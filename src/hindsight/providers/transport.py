from __future__ import annotations

import asyncio
import random
from typing import Any, Dict, Optional

import httpx

RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504, 529})


def build_httpx_client(
    *,
    base_url: str,
    headers: Dict[str, str],
    connect_timeout_sec: float,
    read_timeout_sec: float,
    max_connections: int = 10,
    max_keepalive_connections: int = 5,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    timeout = httpx.Timeout(connect=connect_timeout_sec, read=read_timeout_sec, write=read_timeout_sec, pool=5.0)
    limits = httpx.Limits(
        max_connections=max(1, int(max_connections)),
        max_keepalive_connections=max(1, int(max_keepalive_connections)),
    )
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        timeout=timeout,
        limits=limits,
        transport=transport,
    )


async def post_json_with_retries(
    client: httpx.AsyncClient,
    *,
    path: str,
    payload: Dict[str, Any],
    attempts: int = 3,
    base_backoff_sec: float = 0.5,
) -> httpx.Response:
    max_attempts = max(1, int(attempts))
    for idx in range(max_attempts):
        last_attempt = idx + 1 >= max_attempts
        try:
            resp = await client.post(path, json=payload)
        except httpx.TransportError:
            if last_attempt:
                raise
            await _sleep_backoff(idx, base_backoff_sec)
            continue
        if resp.status_code in RETRYABLE_STATUS_CODES and not last_attempt:
            await _sleep_backoff(idx, base_backoff_sec)
            continue
        resp.raise_for_status()
        return resp
    raise RuntimeError("post_json_with_retries exhausted without result")


async def _sleep_backoff(attempt_idx: int, base_backoff_sec: float) -> None:
    # bounded exponential backoff with jitter
    delay = min(8.0, max(0.0, float(base_backoff_sec)) * (2 ** attempt_idx))
    delay = delay * (0.8 + random.random() * 0.4)
    await asyncio.sleep(delay)
