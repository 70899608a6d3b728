from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from hindsight.domain.errors import ProcessExited, TurnError, TurnTimeout
from hindsight.domain.stats import CompletionStats
from hindsight.observability.structured_log import log_json

from .stream_json import MessageKind, StreamMessage, encode_user_message

logger = logging.getLogger(__name__)

DEFAULT_TURN_TIMEOUT_SEC = 120.0

Writer = Callable[[bytes], Awaitable[None]]


@dataclass
class PendingTurn:
    future: "asyncio.Future[str]"
    started: float
    chunks: List[str] = field(default_factory=list)
    timer: Optional[asyncio.TimerHandle] = None

    def elapsed_ms(self, now: float) -> int:
        return int(round((now - self.started) * 1000))


class TurnCorrelator:
    """Matches stream messages to the single open turn.

    The wire protocol has no request ids, so at most one turn may be open.
    Every turn ends exactly once: result, error, timeout, process exit, or the
    caller abandoning it. Messages that arrive with no open turn are dropped.

    The CLI answers strictly in order, so a turn abandoned after its prompt was
    written still owes one terminal message. Until that arrives, its fragments
    and its result or error are dropped instead of reaching the next turn.
    """

    def __init__(
        self,
        stats: Optional[CompletionStats] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stats = stats if stats is not None else CompletionStats()
        self._clock = clock
        self._pending: Optional[PendingTurn] = None
        self._abandoned = 0

    @property
    def pending(self) -> Optional[PendingTurn]:
        return self._pending

    @property
    def is_open(self) -> bool:
        return self._pending is not None

    @property
    def abandoned(self) -> int:
        return self._abandoned

    def reset(self) -> None:
        """Forget abandoned turns; the process they were written to is gone."""
        self._abandoned = 0

    async def begin_turn(
        self,
        text: str,
        write: Writer,
        timeout_sec: float = DEFAULT_TURN_TIMEOUT_SEC,
    ) -> str:
        if self._pending is not None:
            raise RuntimeError("a turn is already open on this process")
        loop = asyncio.get_running_loop()
        turn = PendingTurn(future=loop.create_future(), started=self._clock())
        turn.timer = loop.call_later(timeout_sec, self._expire, turn, timeout_sec)
        self._pending = turn
        written = False
        try:
            try:
                written = True
                await write(encode_user_message(text))
            except ProcessExited as exc:
                self.fail_pending(exc)
            except OSError as exc:
                self.fail_pending(ProcessExited(f"failed to write to process: {exc}"))
            return await turn.future
        except asyncio.CancelledError:
            if self._settle(turn) and written:
                self._abandoned += 1
                logger.debug("turn abandoned by caller")
            raise

    def dispatch(self, message: StreamMessage) -> None:
        if self._abandoned and message.kind is not MessageKind.SYSTEM:
            if message.kind in (MessageKind.RESULT, MessageKind.ERROR):
                self._abandoned -= 1
            logger.debug("discarding late %s message from an abandoned turn", message.kind.value)
            return

        turn = self._pending
        if turn is None:
            if message.kind is not MessageKind.SYSTEM:
                logger.debug("discarding orphaned %s message", message.kind.value)
            return

        if message.kind is MessageKind.ASSISTANT:
            if message.text:
                turn.chunks.append(message.text)
        elif message.kind is MessageKind.RESULT:
            response = "".join(turn.chunks) or message.text
            elapsed_ms = turn.elapsed_ms(self._clock())
            self._stats.record_completion(elapsed_ms)
            logger.info(
                "Completion in %dms (avg: %dms)", elapsed_ms, self._stats.avg_time_ms
            )
            log_json(logger, "provider.turn.finish", level="debug", elapsed_ms=elapsed_ms, chars=len(response))
            self._settle(turn, result=response)
        elif message.kind is MessageKind.ERROR:
            self._stats.record_error()
            logger.debug("turn failed: %s", message.text)
            self._settle(turn, error=TurnError(message.text))

    def fail_pending(self, exc: BaseException) -> bool:
        """Reject the open turn, if any. Used when the process goes away."""
        self._abandoned = 0
        turn = self._pending
        if turn is None:
            return False
        self._stats.record_error()
        return self._settle(turn, error=exc)

    def _expire(self, turn: PendingTurn, timeout_sec: float) -> None:
        if self._pending is not turn:
            return
        self._stats.record_error()
        self._abandoned += 1
        self._settle(turn, error=TurnTimeout(f"Timeout after {timeout_sec:g}s"))

    def _settle(
        self,
        turn: PendingTurn,
        result: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> bool:
        if self._pending is not turn:
            return False
        self._pending = None
        if turn.timer is not None:
            turn.timer.cancel()
        if not turn.future.done():
            if error is not None:
                turn.future.set_exception(error)
            else:
                turn.future.set_result(result or "")
        return True
