"""Persistent Claude CLI backend.

Keeps a single ``claude --input-format stream-json --output-format stream-json``
process alive across completions so that only the first call pays the cold
start. The process holds one conversational turn at a time, so callers are
serialized on an ``asyncio.Lock``; the state machine is::

    STOPPED -> STARTING -> READY <-> BUSY
                  |                    \\
                  v                     -> STOPPED (process exit / shutdown)
                ERROR (spawn failure)

Configuration via constructor args (see ``hindsight.config.LLMConfig`` for the
environment variables that feed them).
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Dict, List, Mapping, Optional, Sequence

from hindsight.domain.contracts import ProviderState, combine_prompt
from hindsight.domain.errors import ProcessExited, SpawnFailure
from hindsight.domain.stats import CompletionStats
from hindsight.observability.structured_log import log_json, redact

from .shutdown import DEFAULT_DEADLINE_SEC, DEFAULT_GRACE_SEC, ShutdownSequencer
from .stream_json import StreamJsonDecoder
from .turns import DEFAULT_TURN_TIMEOUT_SEC, TurnCorrelator, Writer

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_CLI_PATH = "claude"
DEFAULT_WARMUP_GRACE_SEC = 5.0
DEFAULT_WARMUP_PROMPT = "Hello"

_READ_CHUNK_BYTES = 65_536
_STDOUT_DRAIN_SEC = 0.5
_MAX_SPAWN_ATTEMPTS = 2


class _ProcessNotRunning(ProcessExited):
    """Raised before anything was written, so the turn can be retried."""


def default_command(cli_path: str = DEFAULT_CLI_PATH, model: Optional[str] = None) -> List[str]:
    # --verbose is required by the CLI for stream-json output.
    argv = [
        cli_path or DEFAULT_CLI_PATH,
        "--print",
        "--verbose",
        "--input-format",
        "stream-json",
        "--output-format",
        "stream-json",
        "--dangerously-skip-permissions",
    ]
    if model:
        argv.extend(["--model", model])
    return argv


class PersistentClaudeBackend:
    """One long-lived CLI process, one open turn at a time."""

    mode = "persistent"

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        model: str = DEFAULT_MODEL,
        cli_path: str = DEFAULT_CLI_PATH,
        turn_timeout_sec: float = DEFAULT_TURN_TIMEOUT_SEC,
        warmup_grace_sec: float = DEFAULT_WARMUP_GRACE_SEC,
        warmup_prompt: str = DEFAULT_WARMUP_PROMPT,
        shutdown_grace_sec: float = DEFAULT_GRACE_SEC,
        shutdown_deadline_sec: float = DEFAULT_DEADLINE_SEC,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
        stats: Optional[CompletionStats] = None,
    ) -> None:
        self._command: List[str] = list(command) if command else default_command(cli_path, model)
        self._model = model
        self._turn_timeout_sec = float(turn_timeout_sec)
        self._warmup_grace_sec = float(warmup_grace_sec)
        self._warmup_prompt = warmup_prompt
        self._env: Optional[Dict[str, str]] = {**os.environ, **env} if env is not None else None
        self._cwd = cwd
        self._stats = stats if stats is not None else CompletionStats()
        self._correlator = TurnCorrelator(self._stats)
        self._sequencer = ShutdownSequencer(
            grace_sec=shutdown_grace_sec,
            deadline_sec=shutdown_deadline_sec,
        )

        self._state = ProviderState.STOPPED
        self._process: Optional[asyncio.subprocess.Process] = None
        self._turn_lock = asyncio.Lock()
        self._start_task: Optional[asyncio.Future] = None
        self._shutdown_task: Optional[asyncio.Future] = None
        self._io_tasks: List[asyncio.Task] = []
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> ProviderState:
        return self._state

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def stats(self) -> CompletionStats:
        return self._stats

    @property
    def command(self) -> List[str]:
        return list(self._command)

    @property
    def sequencer(self) -> ShutdownSequencer:
        return self._sequencer

    @property
    def turn_open(self) -> bool:
        return self._correlator.is_open

    def is_ready(self) -> bool:
        return self._state is ProviderState.READY

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Start the process and warm it up. Concurrent callers share one start."""
        if self._process is not None and self._state in (ProviderState.READY, ProviderState.BUSY):
            return True
        task = self._start_task
        if task is None:
            task = asyncio.ensure_future(self._start())
            self._start_task = task
            task.add_done_callback(self._clear_start_task)
        return await asyncio.shield(task)

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        full_prompt = combine_prompt(prompt, system_prompt)
        for attempt in range(_MAX_SPAWN_ATTEMPTS):
            if self._state in (ProviderState.STOPPED, ProviderState.ERROR):
                logger.info("Auto-initializing persistent process...")
                await self.initialize()
            elif self._start_task is not None:
                await self.initialize()
            try:
                return await self._run_turn(full_prompt)
            except _ProcessNotRunning:
                # Nothing was written; a caller queued behind a dying process respawns it.
                if self._shutting_down or attempt + 1 >= _MAX_SPAWN_ATTEMPTS:
                    raise
                logger.info("Process exited while waiting for the turn slot; respawning")
        raise ProcessExited("Process not running")

    async def shutdown(self) -> None:
        start = self._start_task
        if start is not None:
            # Let an in-flight spawn finish so its process is stopped too.
            await asyncio.wait({start})
        task = self._shutdown_task
        if task is None:
            process = self._process
            if process is None:
                return
            task = asyncio.ensure_future(self._shutdown(process))
            self._shutdown_task = task
            task.add_done_callback(self._clear_shutdown_task)
        await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Internal: spawn and warmup
    # ------------------------------------------------------------------

    async def _start(self) -> bool:
        self._set_state(ProviderState.STARTING)
        self._stats.record_cold_start()
        log_json(logger, "provider.spawn.start", provider="claude_cli", command=self._command[0])
        try:
            process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
                cwd=self._cwd,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            self._set_state(ProviderState.ERROR)
            log_json(
                logger,
                "provider.spawn.error",
                level="error",
                provider="claude_cli",
                command=self._command[0],
                kind=type(exc).__name__,
                error=str(exc),
            )
            raise SpawnFailure(f"failed to start {self._command[0]}: {exc}") from exc

        self._process = process
        self._shutting_down = False
        self._correlator.reset()
        logger.info("Claude CLI spawned (PID: %s)", process.pid)
        stdout_task = asyncio.create_task(self._read_stdout(process), name=f"claude-stdout-{process.pid}")
        stderr_task = asyncio.create_task(self._read_stderr(process), name=f"claude-stderr-{process.pid}")
        exit_task = asyncio.create_task(
            self._watch_exit(process, stdout_task),
            name=f"claude-exit-{process.pid}",
        )
        self._io_tasks = [stdout_task, stderr_task, exit_task]
        return await self._warmup(process)

    async def _warmup(self, process: asyncio.subprocess.Process) -> bool:
        warmup = asyncio.ensure_future(self._run_turn(self._warmup_prompt))
        done, _ = await asyncio.wait({warmup}, timeout=self._warmup_grace_sec)

        if not done:
            # The CLI may still be loading; a live but slow process counts as ready.
            warmup.add_done_callback(self._log_late_warmup)
            log_json(
                logger,
                "provider.warmup.grace_elapsed",
                provider="claude_cli",
                pid=process.pid,
                grace_sec=self._warmup_grace_sec,
            )
            if self._process is not process:
                raise ProcessExited("Process exited during warmup", process.returncode)
            self._set_state(ProviderState.BUSY if self._correlator.is_open else ProviderState.READY)
            return True

        exc = warmup.exception()
        if self._process is not process:
            log_json(logger, "provider.warmup.error", level="error", provider="claude_cli", pid=process.pid)
            if isinstance(exc, ProcessExited):
                raise exc
            raise ProcessExited("Process exited during warmup", process.returncode)
        if exc is not None:
            log_json(
                logger,
                "provider.warmup.error",
                level="warning",
                provider="claude_cli",
                pid=process.pid,
                kind=type(exc).__name__,
                error=str(exc),
            )
        self._set_state(ProviderState.READY)
        log_json(logger, "provider.ready", provider="claude_cli", pid=process.pid)
        return True

    # ------------------------------------------------------------------
    # Internal: turns
    # ------------------------------------------------------------------

    async def _run_turn(self, text: str) -> str:
        async with self._turn_lock:
            process = self._process
            if process is None or process.returncode is not None:
                raise _ProcessNotRunning("Process not running")
            if self._state is not ProviderState.STARTING:
                self._set_state(ProviderState.BUSY)
            try:
                return await self._correlator.begin_turn(
                    text,
                    self._writer(process),
                    timeout_sec=self._turn_timeout_sec,
                )
            finally:
                if (
                    self._process is process
                    and process.returncode is None
                    and self._state is ProviderState.BUSY
                ):
                    self._set_state(ProviderState.READY)

    def _writer(self, process: asyncio.subprocess.Process) -> Writer:
        async def write(data: bytes) -> None:
            stdin = process.stdin
            if stdin is None or stdin.is_closing() or process.returncode is not None:
                raise ProcessExited("Process not running", process.returncode)
            stdin.write(data)
            await stdin.drain()

        return write

    # ------------------------------------------------------------------
    # Internal: process IO
    # ------------------------------------------------------------------

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        stream = process.stdout
        if stream is None:
            return
        decoder = StreamJsonDecoder()
        while True:
            chunk = await stream.read(_READ_CHUNK_BYTES)
            if not chunk:
                return
            for message in decoder.feed(chunk):
                self._correlator.dispatch(message)

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        stream = process.stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            for line in chunk.decode("utf-8", errors="replace").splitlines():
                msg = line.strip()
                if msg and "Loading" not in msg:
                    logger.info("stderr: %s", redact(msg))

    async def _watch_exit(self, process: asyncio.subprocess.Process, stdout_task: asyncio.Task) -> None:
        returncode = await process.wait()
        # Let the reader deliver a final result line before the turn is failed.
        await asyncio.wait({stdout_task}, timeout=_STDOUT_DRAIN_SEC)
        self._on_exit(process, returncode)

    def _on_exit(self, process: asyncio.subprocess.Process, returncode: Optional[int]) -> None:
        if self._process is not process:
            return
        self._process = None
        self._set_state(ProviderState.STOPPED)
        if self._shutting_down:
            message = f"Process shut down (code={returncode})"
            log_json(logger, "provider.process.exit", provider="claude_cli", pid=process.pid,
                     returncode=returncode, expected=True)
        else:
            message = f"Process exited unexpectedly (code={returncode})"
            log_json(logger, "provider.process.exit", level="warning", provider="claude_cli",
                     pid=process.pid, returncode=returncode, expected=False)
        self._correlator.fail_pending(ProcessExited(message, returncode))

    # ------------------------------------------------------------------
    # Internal: shutdown
    # ------------------------------------------------------------------

    async def _shutdown(self, process: asyncio.subprocess.Process) -> None:
        self._shutting_down = True
        log_json(logger, "provider.shutdown.start", provider="claude_cli", pid=process.pid)
        returncode = await self._sequencer.run(process)
        pending_io = [task for task in self._io_tasks if not task.done()]
        if pending_io:
            _, still_running = await asyncio.wait(pending_io, timeout=_STDOUT_DRAIN_SEC)
            for task in still_running:
                task.cancel()
        self._on_exit(process, returncode)
        log_json(logger, "provider.shutdown.complete", provider="claude_cli", pid=process.pid,
                 returncode=returncode)

    # ------------------------------------------------------------------
    # Internal: bookkeeping
    # ------------------------------------------------------------------

    def _set_state(self, state: ProviderState) -> None:
        if state is not self._state:
            logger.debug("provider state %s -> %s", self._state.value, state.value)
            self._state = state

    def _clear_start_task(self, task: asyncio.Future) -> None:
        if self._start_task is task:
            self._start_task = None
        if not task.cancelled():
            task.exception()

    def _clear_shutdown_task(self, task: asyncio.Future) -> None:
        if self._shutdown_task is task:
            self._shutdown_task = None
        if not task.cancelled():
            task.exception()

    def _log_late_warmup(self, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            log_json(logger, "provider.warmup.finish", provider="claude_cli", late=True)
        else:
            log_json(logger, "provider.warmup.error", level="warning", provider="claude_cli",
                     late=True, kind=type(exc).__name__, error=str(exc))
