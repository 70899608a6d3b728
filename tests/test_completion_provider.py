import unittest

from hindsight.app_container import build_completion_provider
from hindsight.config import LLMConfig
from hindsight.domain.contracts import PROMPT_SEPARATOR, ProviderState, combine_prompt
from hindsight.domain.errors import TurnError
from hindsight.domain.stats import CompletionStats
from hindsight.providers.anthropic_provider import AnthropicBackend
from hindsight.providers.claude_persistent import PersistentClaudeBackend
from hindsight.providers.completion import CompletionProvider
from hindsight.services.error_codes import describe_error, get_catalog_entry


class _FakeBackend:
    mode = "persistent"

    def __init__(self, stats: CompletionStats):
        self.stats = stats
        self.state = ProviderState.STOPPED
        self.pid = None
        self.calls = []
        self.shutdowns = 0

    async def initialize(self) -> bool:
        self.state = ProviderState.READY
        self.pid = 4242
        return True

    async def complete(self, prompt, system_prompt=None):
        self.calls.append((prompt, system_prompt))
        if prompt == "boom":
            self.stats.record_error()
            raise TurnError("boom")
        self.stats.record_completion(20)
        return f"ok:{prompt}"

    async def shutdown(self) -> None:
        self.shutdowns += 1
        self.state = ProviderState.STOPPED
        self.pid = None


class TestCombinePrompt(unittest.TestCase):
    def test_system_prompt_is_prefixed_with_separator(self):
        self.assertEqual(combine_prompt("question", "rules"), "rules" + PROMPT_SEPARATOR + "question")
        self.assertEqual(PROMPT_SEPARATOR, "\n\n---\n\n")

    def test_missing_or_empty_system_prompt_leaves_prompt_untouched(self):
        self.assertEqual(combine_prompt("question"), "question")
        self.assertEqual(combine_prompt("question", ""), "question")


class TestCompletionProvider(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.stats = CompletionStats()
        self.backend = _FakeBackend(self.stats)
        self.provider = CompletionProvider(self.backend, model="claude-test", stats=self.stats)

    async def test_delegates_and_reports_stats(self):
        self.assertFalse(self.provider.is_ready())
        self.assertTrue(await self.provider.initialize())
        self.assertTrue(self.provider.is_ready())
        self.assertEqual(await self.provider.complete("a"), "ok:a")
        self.assertEqual(await self.provider.complete("b", "sys"), "ok:b")
        self.assertEqual(self.backend.calls, [("a", None), ("b", "sys")])

        stats = self.provider.get_stats()
        self.assertEqual(stats["mode"], "persistent")
        self.assertEqual(stats["model"], "claude-test")
        self.assertEqual(stats["state"], "READY")
        self.assertEqual(stats["completions"], 2)
        self.assertEqual(stats["total_time_ms"], 40)
        self.assertEqual(stats["avg_time_ms"], 20)
        self.assertEqual(stats["errors"], 0)

    async def test_errors_propagate_and_are_counted(self):
        with self.assertRaises(TurnError):
            await self.provider.complete("boom")
        self.assertEqual(self.provider.get_stats()["errors"], 1)

    async def test_empty_system_prompt_is_dropped(self):
        await self.provider.complete("a", "")
        self.assertEqual(self.backend.calls, [("a", None)])

    async def test_info_exposes_pid_and_key_presence(self):
        await self.provider.initialize()
        info = self.provider.get_info()
        self.assertEqual(info["pid"], 4242)
        self.assertFalse(info["has_api_key"])
        await self.provider.shutdown()
        self.assertEqual(self.backend.shutdowns, 1)
        self.assertIsNone(self.provider.get_info()["pid"])
        self.assertEqual(self.provider.state, ProviderState.STOPPED)


class TestBuildCompletionProvider(unittest.IsolatedAsyncioTestCase):
    async def test_persistent_mode(self):
        config = LLMConfig(mode="persistent", model="claude-x", cli_path="/opt/claude", turn_timeout_sec=30)
        provider = build_completion_provider(config)
        self.assertEqual(provider.mode, "persistent")
        self.assertIsInstance(provider.backend, PersistentClaudeBackend)
        command = provider.backend.command
        self.assertEqual(command[0], "/opt/claude")
        self.assertEqual(command[-2:], ["--model", "claude-x"])
        self.assertEqual(provider.state, ProviderState.STOPPED)
        await provider.shutdown()

    async def test_api_mode(self):
        provider = build_completion_provider(LLMConfig(mode="API", api_key="sk-ant-test"))
        self.assertEqual(provider.mode, "api")
        self.assertIsInstance(provider.backend, AnthropicBackend)
        self.assertTrue(provider.is_ready())
        self.assertTrue(provider.get_info()["has_api_key"])
        self.assertIsNone(provider.get_info()["pid"])
        await provider.shutdown()

    def test_unknown_mode_is_rejected(self):
        with self.assertRaises(ValueError) as ctx:
            build_completion_provider(LLMConfig(mode="cli"))
        self.assertIn("api, persistent", str(ctx.exception))


class TestErrorCatalog(unittest.TestCase):
    def test_completion_errors_map_to_catalog(self):
        self.assertEqual(describe_error(TurnError("x")).code, "ERR_TURN_FAILED")
        self.assertEqual(describe_error(TurnError("x")).http_status, 502)

    def test_unknown_codes_fall_back(self):
        self.assertEqual(get_catalog_entry("ERR_NOPE").code, "ERR_UNKNOWN")
        self.assertEqual(describe_error(RuntimeError("x")).code, "ERR_UNKNOWN")
