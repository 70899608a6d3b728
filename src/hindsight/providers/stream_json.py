"""Line-delimited JSON framing for the Claude CLI ``stream-json`` mode.

Each message is one JSON object followed by ``\\n`` in both directions. The
CLI occasionally prints plain diagnostic text on stdout; such lines are
dropped here and never reach the turn correlator.
"""
from __future__ import annotations

import codecs
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class MessageKind(str, Enum):
    ASSISTANT = "assistant"
    RESULT = "result"
    ERROR = "error"
    SYSTEM = "system"


@dataclass(frozen=True)
class StreamMessage:
    kind: MessageKind
    text: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class StreamJsonDecoder:
    """Accumulates stdout chunks and yields one message per complete line."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def reset(self) -> None:
        self._decoder.reset()
        self._buffer = ""

    def feed(self, data: Union[bytes, str]) -> List[StreamMessage]:
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        messages: List[StreamMessage] = []
        for line in lines:
            message = parse_line(line)
            if message is not None:
                messages.append(message)
        return messages


def parse_line(line: str) -> Optional[StreamMessage]:
    trimmed = line.strip()
    if not trimmed:
        return None
    try:
        obj = json.loads(trimmed)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None
    return decode_message(obj)


def decode_message(obj: Dict[str, Any]) -> Optional[StreamMessage]:
    kind = obj.get("type")
    if kind == MessageKind.ASSISTANT.value:
        return StreamMessage(MessageKind.ASSISTANT, _assistant_text(obj), obj)
    if kind == MessageKind.RESULT.value:
        result = obj.get("result")
        return StreamMessage(MessageKind.RESULT, result if isinstance(result, str) else "", obj)
    if kind == MessageKind.ERROR.value:
        return StreamMessage(MessageKind.ERROR, _error_text(obj), obj)
    if kind == MessageKind.SYSTEM.value:
        return StreamMessage(MessageKind.SYSTEM, "", obj)
    return None


def encode_user_message(content: str) -> bytes:
    payload = {"type": "user", "message": {"role": "user", "content": content}}
    return (json.dumps(payload, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")


def _assistant_text(obj: Dict[str, Any]) -> str:
    message = obj.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if not isinstance(content, list):
        return ""
    parts: List[str] = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text")
            if isinstance(text, str) and text:
                parts.append(text)
    return "".join(parts)


def _error_text(obj: Dict[str, Any]) -> str:
    error = obj.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str) and error:
        return error
    message = obj.get("message")
    if isinstance(message, str) and message:
        return message
    return "Unknown error"
