import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from hindsight.app_container import build_completion_provider
from hindsight.config import DEFAULT_CONFIG_DIR, Config, load_config
from hindsight.domain.errors import CompletionError


def _configure_logging(level: str) -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_config(config: Config) -> None:
    llm = config.llm
    print(f"Config dir: {config.config_dir}")
    print(f"Env file: {config.env_path}")
    print(f"LLM mode: {llm.mode}")
    print(f"LLM model: {llm.model}")
    print(f"Turn timeout: {llm.turn_timeout_sec:g}s")
    print(f"API key present: {'yes' if llm.api_key else 'no'}")
    print(f"Listen: {config.server.host}:{config.server.port}")


async def _complete_once(config: Config, prompt: str, system_prompt: Optional[str]) -> int:
    provider = build_completion_provider(config.llm)
    try:
        text = await provider.complete(prompt, system_prompt)
    except CompletionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await provider.shutdown()
    print(text)
    return 0


def _serve(config: Config, host: Optional[str], port: Optional[int], log_level: str) -> None:
    from hindsight.control_center.app import create_app
    import uvicorn

    provider = build_completion_provider(config.llm)
    app = create_app(provider)
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=log_level.lower(),
    )


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Hindsight LLM completion service")
    parser.add_argument(
        "--config-dir",
        default=str(DEFAULT_CONFIG_DIR),
        help="Directory holding the .env config (default: ~/.config/hindsight)",
    )
    parser.add_argument("--print-config", action="store_true", help="Print active config summary")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default=None, help="Bind host (default: HOST or 0.0.0.0)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: PORT or 8765)")

    complete = sub.add_parser("complete", help="Run a single completion and exit")
    complete.add_argument("prompt")
    complete.add_argument("--system", default=None, help="Optional system prompt")

    args = parser.parse_args(argv)
    config_dir = Path(args.config_dir).expanduser().resolve()
    _configure_logging(args.log_level)
    config = load_config(config_dir)

    if args.print_config:
        _print_config(config)
        return 0

    try:
        if args.command == "complete":
            return asyncio.run(_complete_once(config, args.prompt, args.system))
        if args.command == "serve":
            _serve(config, args.host, args.port, args.log_level)
            return 0
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
