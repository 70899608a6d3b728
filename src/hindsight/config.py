import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from hindsight.providers.claude_persistent import (
    DEFAULT_CLI_PATH,
    DEFAULT_MODEL,
    DEFAULT_WARMUP_GRACE_SEC,
    DEFAULT_WARMUP_PROMPT,
)
from hindsight.providers.shutdown import DEFAULT_DEADLINE_SEC, DEFAULT_GRACE_SEC
from hindsight.providers.turns import DEFAULT_TURN_TIMEOUT_SEC

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "hindsight"
DEFAULT_MODE = "persistent"
DEFAULT_MAX_TOKENS = 1000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8765


@dataclass
class LLMConfig:
    mode: str = DEFAULT_MODE
    model: str = DEFAULT_MODEL
    turn_timeout_sec: float = DEFAULT_TURN_TIMEOUT_SEC
    warmup_grace_sec: float = DEFAULT_WARMUP_GRACE_SEC
    warmup_prompt: str = DEFAULT_WARMUP_PROMPT
    shutdown_grace_sec: float = DEFAULT_GRACE_SEC
    shutdown_deadline_sec: float = DEFAULT_DEADLINE_SEC
    api_key: str = ""
    max_tokens: int = DEFAULT_MAX_TOKENS
    cli_path: str = DEFAULT_CLI_PATH
    api_base_url: str = ""


@dataclass
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


@dataclass
class Config:
    llm: LLMConfig
    server: ServerConfig
    config_dir: Path
    env_path: Path


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip().strip('"').strip("'")
    except OSError as exc:
        logger.warning("Failed to read %s: %s", path, exc)
    return data


def get_env_path(config_dir: Path) -> Path:
    return config_dir / ".env"


def get_env_value(key: str, env_file: Mapping[str, str], environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    source = os.environ if environ is None else environ
    value = (source.get(key) or "").strip()
    if value:
        return value
    value = (env_file.get(key) or "").strip()
    return value or None


def _read_float(key: str, default: float, env_file: Mapping[str, str], environ: Optional[Mapping[str, str]]) -> float:
    raw = get_env_value(key, env_file, environ)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", key, raw)
        return default
    return value if value > 0 else default


def _read_int(key: str, default: int, env_file: Mapping[str, str], environ: Optional[Mapping[str, str]]) -> int:
    raw = get_env_value(key, env_file, environ)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", key, raw)
        return default
    return value if value > 0 else default


def load_llm_config(env_file: Mapping[str, str], environ: Optional[Mapping[str, str]] = None) -> LLMConfig:
    def text(key: str, default: str) -> str:
        return get_env_value(key, env_file, environ) or default

    return LLMConfig(
        mode=text("LLM_MODE", DEFAULT_MODE).lower(),
        model=text("LLM_MODEL", DEFAULT_MODEL),
        turn_timeout_sec=_read_float("LLM_TIMEOUT_SEC", DEFAULT_TURN_TIMEOUT_SEC, env_file, environ),
        warmup_grace_sec=_read_float("LLM_WARMUP_GRACE_SEC", DEFAULT_WARMUP_GRACE_SEC, env_file, environ),
        warmup_prompt=text("LLM_WARMUP_PROMPT", DEFAULT_WARMUP_PROMPT),
        shutdown_grace_sec=_read_float("LLM_SHUTDOWN_GRACE_SEC", DEFAULT_GRACE_SEC, env_file, environ),
        shutdown_deadline_sec=_read_float("LLM_SHUTDOWN_DEADLINE_SEC", DEFAULT_DEADLINE_SEC, env_file, environ),
        api_key=text("ANTHROPIC_API_KEY", ""),
        max_tokens=_read_int("LLM_MAX_TOKENS", DEFAULT_MAX_TOKENS, env_file, environ),
        cli_path=text("CLAUDE_CLI_PATH", DEFAULT_CLI_PATH),
        api_base_url=text("ANTHROPIC_BASE_URL", ""),
    )


def load_server_config(env_file: Mapping[str, str], environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
    return ServerConfig(
        host=get_env_value("HOST", env_file, environ) or DEFAULT_HOST,
        port=_read_int("PORT", DEFAULT_PORT, env_file, environ),
    )


def load_config(config_dir: Path, environ: Optional[Mapping[str, str]] = None) -> Config:
    env_path = get_env_path(config_dir)
    env_file = load_env_file(env_path)
    return Config(
        llm=load_llm_config(env_file, environ),
        server=load_server_config(env_file, environ),
        config_dir=config_dir,
        env_path=env_path,
    )
