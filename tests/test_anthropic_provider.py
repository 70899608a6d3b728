"""Tests for AnthropicBackend over a mocked httpx transport."""
import json
import unittest

import httpx

from hindsight.domain.contracts import ProviderState
from hindsight.domain.errors import ProviderConfigError, RemoteApiError
from hindsight.providers.anthropic_provider import AnthropicBackend, _extract_text


def _ok(text: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={"id": "msg_1", "content": [{"type": "text", "text": text}], "stop_reason": "end_turn"},
    )


class TestExtractText:
    def test_first_text_block(self):
        data = {"content": [{"type": "tool_use", "name": "x"}, {"type": "text", "text": "hi"}]}
        assert _extract_text(data) == "hi"

    def test_no_text(self):
        assert _extract_text({"content": []}) == ""
        assert _extract_text({}) == ""
        assert _extract_text(["not", "a", "dict"]) == ""


class TestAnthropicBackend(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.requests = []
        self.responses = []

    def _handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def _backend(self, api_key: str = "sk-ant-test", **kwargs) -> AnthropicBackend:
        backend = AnthropicBackend(
            api_key=api_key,
            model="claude-test",
            max_tokens=256,
            timeout_sec=5,
            retry_backoff_sec=0,
            transport=httpx.MockTransport(self._handler),
            **kwargs,
        )
        return backend

    async def test_posts_messages_with_system_field(self):
        self.responses = [_ok("Hello back")]
        backend = self._backend()
        text = await backend.complete("Hello", "Be brief.")
        await backend.shutdown()

        self.assertEqual(text, "Hello back")
        request = self.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/v1/messages")
        self.assertEqual(request.headers["x-api-key"], "sk-ant-test")
        self.assertEqual(request.headers["anthropic-version"], "2023-06-01")
        body = json.loads(request.content)
        self.assertEqual(body["model"], "claude-test")
        self.assertEqual(body["max_tokens"], 256)
        self.assertEqual(body["system"], "Be brief.")
        self.assertEqual(body["messages"], [{"role": "user", "content": "Hello"}])
        self.assertEqual(backend.stats.completions, 1)

    async def test_no_system_field_without_system_prompt(self):
        self.responses = [_ok("x")]
        backend = self._backend()
        await backend.complete("Hello")
        await backend.shutdown()
        self.assertNotIn("system", json.loads(self.requests[0].content))

    async def test_retries_overloaded_status(self):
        self.responses = [httpx.Response(529, json={"error": "overloaded"}), _ok("second try")]
        backend = self._backend()
        self.assertEqual(await backend.complete("Hello"), "second try")
        await backend.shutdown()
        self.assertEqual(len(self.requests), 2)
        self.assertEqual(backend.stats.errors, 0)

    async def test_client_error_is_not_retried(self):
        self.responses = [httpx.Response(400, json={"error": {"message": "bad request"}})]
        backend = self._backend()
        with self.assertRaises(RemoteApiError) as ctx:
            await backend.complete("Hello")
        await backend.shutdown()
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(len(self.requests), 1)
        self.assertEqual(backend.stats.errors, 1)
        self.assertEqual(backend.stats.completions, 0)

    async def test_exhausted_retries_surface_last_status(self):
        self.responses = [httpx.Response(503), httpx.Response(503)]
        backend = self._backend(retry_attempts=2)
        with self.assertRaises(RemoteApiError) as ctx:
            await backend.complete("Hello")
        await backend.shutdown()
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(len(self.requests), 2)

    async def test_missing_api_key(self):
        backend = self._backend(api_key="")
        self.assertFalse(backend.has_api_key)
        self.assertTrue(await backend.initialize())
        with self.assertRaises(ProviderConfigError):
            await backend.complete("Hello")
        self.assertEqual(self.requests, [])
        self.assertEqual(backend.stats.errors, 1)

    async def test_state_follows_client_lifecycle(self):
        self.responses = [_ok("a"), _ok("b")]
        backend = self._backend()
        self.assertEqual(backend.state, ProviderState.READY)
        self.assertIsNone(backend.pid)
        await backend.complete("one")
        await backend.shutdown()
        self.assertEqual(backend.state, ProviderState.STOPPED)
        self.assertEqual(await backend.complete("two"), "b")
        self.assertEqual(backend.state, ProviderState.READY)
        await backend.shutdown()
        await backend.shutdown()
