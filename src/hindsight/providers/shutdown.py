from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from typing import List, Optional

from hindsight.observability.structured_log import log_json

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SEC = 1.0
DEFAULT_DEADLINE_SEC = 5.0
DEFAULT_KILL_WAIT_SEC = 2.0


class ShutdownSequencer:
    """Escalating stop: close stdin, then SIGTERM, then SIGKILL at the deadline.

    The deadline is measured from the start of ``run``. Each wait returns as
    soon as the process exits, and no signal is sent to a process whose exit
    has already been observed.
    """

    def __init__(
        self,
        grace_sec: float = DEFAULT_GRACE_SEC,
        deadline_sec: float = DEFAULT_DEADLINE_SEC,
        kill_wait_sec: float = DEFAULT_KILL_WAIT_SEC,
    ) -> None:
        self.grace_sec = max(0.0, float(grace_sec))
        self.deadline_sec = max(self.grace_sec, float(deadline_sec))
        self.kill_wait_sec = max(0.0, float(kill_wait_sec))
        self.signals_sent: List[int] = []

    async def run(self, process: asyncio.subprocess.Process) -> Optional[int]:
        if process.returncode is not None:
            return process.returncode
        started = time.monotonic()

        _close_stdin(process)
        if await _wait_exit(process, self.grace_sec):
            return process.returncode

        self._send(process, signal.SIGTERM)
        remaining = self.deadline_sec - (time.monotonic() - started)
        if await _wait_exit(process, max(0.0, remaining)):
            return process.returncode

        log_json(logger, "provider.shutdown.force_kill", level="warning", pid=process.pid)
        self._send(process, signal.SIGKILL)
        if await _wait_exit(process, self.kill_wait_sec):
            return process.returncode
        logger.error("Process %s did not exit after SIGKILL", process.pid)
        return None

    def _send(self, process: asyncio.subprocess.Process, sig: int) -> None:
        if process.returncode is not None:
            return
        self.signals_sent.append(int(sig))
        try:
            os.killpg(process.pid, sig)
            return
        except OSError:
            # Not a group leader: signal the process itself.
            pass
        try:
            process.send_signal(sig)
        except ProcessLookupError:
            return


def _close_stdin(process: asyncio.subprocess.Process) -> None:
    stdin = process.stdin
    if stdin is None or stdin.is_closing():
        return
    try:
        stdin.close()
    except (BrokenPipeError, ConnectionResetError):
        pass


async def _wait_exit(process: asyncio.subprocess.Process, timeout_sec: float) -> bool:
    if process.returncode is not None:
        return True
    try:
        await asyncio.wait_for(asyncio.shield(process.wait()), timeout=timeout_sec)
    except asyncio.TimeoutError:
        return process.returncode is not None
    return True
