"""
Append-only record of orchestration calls.
"""
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class UsageRecord:
    """One finished orchestration call (cache hit, remote result or fallback)."""

    timestamp: float
    operation: str
    model: str
    cache_hit: bool
    latency_ms: float
    tokens_used: int
    cost_usd: float
    success: bool
    source: str
    caller_id: str
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class UsageLedger:
    """Thread-safe append-only list of UsageRecords."""

    def __init__(self, max_records: Optional[int] = None):
        self._records: List[UsageRecord] = []
        self._lock = Lock()
        self.max_records = max_records

    def append(self, record: UsageRecord) -> None:
        with self._lock:
            self._records.append(record)
            if self.max_records is not None and len(self._records) > self.max_records:
                del self._records[: len(self._records) - self.max_records]

    def records(self, since: Optional[float] = None) -> List[UsageRecord]:
        """Copy of the records, optionally only those with timestamp >= since."""
        with self._lock:
            if since is None:
                return list(self._records)
            return [r for r in self._records if r.timestamp >= since]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)