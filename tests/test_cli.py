from hindsight.cli import main


class TestCli:
    def test_print_config(self, tmp_path, monkeypatch, capsys):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("LLM_MODE", raising=False)
        (tmp_path / ".env").write_text("LLM_MODEL=claude-haiku\nPORT=9100\n", encoding="utf-8")
        assert main(["--config-dir", str(tmp_path), "--print-config"]) == 0
        out = capsys.readouterr().out
        assert "LLM mode: persistent" in out
        assert "LLM model: claude-haiku" in out
        assert "API key present: no" in out
        assert ":9100" in out

    def test_unknown_mode_exits_with_usage_error(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("LLM_MODE", "telepathy")
        assert main(["--config-dir", str(tmp_path), "complete", "hello"]) == 2
        assert "Unknown LLM mode" in capsys.readouterr().err

    def test_complete_reports_config_error(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("LLM_MODE", "api")
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert main(["--config-dir", str(tmp_path), "complete", "hello"]) == 1
        assert "ANTHROPIC_API_KEY" in capsys.readouterr().err

    def test_no_command_prints_help(self, tmp_path, capsys):
        assert main(["--config-dir", str(tmp_path)]) == 2
        assert "usage" in capsys.readouterr().out
