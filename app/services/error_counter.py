import threading
from collections import Counter


class ErrorStatusCounter:
    """
    Process wide count of rejected and failed requests by category.

    Counts only grow and are lost on restart. One instance is created at startup
    and handed to every component that reports errors.
    """

    def __init__(self):
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def increment(self, category: str) -> None:
        with self._lock:
            self._counts[category] += 1

    def snapshot(self) -> dict[str, int]:
        """Copy of the current counts, safe to serialize while others keep counting"""
        with self._lock:
            return dict(self._counts)
