# greedy_eye/correlation.py
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .models import ExplorationJob


@dataclass(slots=True)
class CorrelationEntry:
    req_id: int
    job: ExplorationJob
    sent_at: float


class CorrelationTable:
    """
    Outstanding request id -> in-flight job.
    Written by the dispatcher (put), consumed by the reader (take) and the timeout sweep.
    """
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[int, CorrelationEntry] = {}

    def put(self, req_id: int, job: ExplorationJob) -> None:
        with self._lock:
            if req_id in self._entries:
                raise KeyError(f"request id {req_id} is already outstanding")
            self._entries[req_id] = CorrelationEntry(req_id, job, self._clock())

    def take(self, req_id: int) -> Optional[ExplorationJob]:
        with self._lock:
            entry = self._entries.pop(req_id, None)
        return entry.job if entry else None

    def expire(self, max_age: float) -> List[CorrelationEntry]:
        """Remove and return entries older than `max_age` seconds."""
        deadline = self._clock() - max_age
        with self._lock:
            expired = [e for e in self._entries.values() if e.sent_at <= deadline]
            for e in expired:
                del self._entries[e.req_id]
        return expired

    def drain(self) -> List[CorrelationEntry]:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        return entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, req_id: int) -> bool:
        with self._lock:
            return req_id in self._entries
