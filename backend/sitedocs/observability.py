import threading
from collections import Counter

AGGREGATION_PARTIAL_FAILURES = "aggregation.partial_failures"
AGGREGATION_SOURCE_FAILURES = "aggregation.source_failures"
ATTACHMENT_ORPHANED_MOVES = "attachments.orphaned_moves"
SUBMISSION_BACKFILL_FAILURES = "submissions.backfill_failures"
STORAGE_CLEANUP_FAILURES = "storage.cleanup_failures"


class Counters:
    """Process-local counters for failures that are swallowed rather than surfaced."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()

    def increment(self, name: str, amount: int = 1):
        with self._lock:
            self._counts[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def reset(self):
        with self._lock:
            self._counts.clear()


counters = Counters()
