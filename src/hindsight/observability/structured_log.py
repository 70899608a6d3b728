import json
import re
from datetime import datetime, timezone
from logging import Logger
from typing import Any, Dict

_REDACTIONS = (
    (re.compile(r"sk-ant-[A-Za-z0-9_-]{10,}"), "sk-ant-REDACTED"),
    (re.compile(r"sk-[A-Za-z0-9_-]{10,}"), "sk-REDACTED"),
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*"), "Bearer REDACTED"),
    (
        re.compile(r"(?i)\b([A-Z0-9_]*(?:api[_-]?key|token|secret|password))\b\s*[:=]\s*([^\s,;]+)"),
        r"\1=REDACTED",
    ),
)


def redact(text: str) -> str:
    value = text or ""
    for regex, replacement in _REDACTIONS:
        value = regex.sub(replacement, value)
    return value


def log_json(logger: Logger, event: str, level: str = "info", **fields: Any) -> None:
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
    }
    for key, value in fields.items():
        payload[key] = redact(value) if isinstance(value, str) else value
    getattr(logger, level, logger.info)(json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str))
