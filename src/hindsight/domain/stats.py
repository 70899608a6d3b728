from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass
class CompletionStats:
    """Counters shared by every completion backend.

    Updated only at terminal turn events; readers take a ``snapshot()``.
    """

    completions: int = 0
    total_time_ms: int = 0
    avg_time_ms: int = 0
    errors: int = 0
    cold_starts: int = 0

    def record_completion(self, elapsed_ms: int) -> None:
        self.completions += 1
        self.total_time_ms += max(0, int(elapsed_ms))
        self.avg_time_ms = round(self.total_time_ms / self.completions)

    def record_error(self) -> None:
        self.errors += 1

    def record_cold_start(self) -> None:
        self.cold_starts += 1

    def snapshot(self) -> Dict[str, Any]:
        return asdict(self)
