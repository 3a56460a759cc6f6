"""Bounded in-memory buffer of the most recently ingested records."""

import threading
from collections import deque
from typing import Deque, Dict, List, Optional


class RecentMetrics:
    """Newest-first ring buffer of serialized metric records.

    Pushing beyond capacity evicts the oldest entry. The buffer is owned by the
    ingestion service; nothing else writes to it.
    """

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError('capacity must be at least 1')
        self.capacity = capacity
        self._items: Deque[Dict] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def push(self, record: Dict) -> Optional[Dict]:
        """Add a record at the front.

        Returns:
            The evicted oldest record, or None if nothing was evicted
        """
        with self._lock:
            evicted = self._items[-1] if len(self._items) == self.capacity else None
            self._items.appendleft(record)
        return evicted

    def snapshot(self, service: Optional[str] = None, limit: Optional[int] = None) -> List[Dict]:
        """Copy of the buffered records, newest first."""
        with self._lock:
            items = [r for r in self._items if service is None or r.get('serviceName') == service]
        return items[:limit] if limit is not None else items

    def evict(self, service: Optional[str] = None) -> int:
        """Drop buffered records for one service, or all of them.

        Returns:
            Number of records dropped
        """
        with self._lock:
            before = len(self._items)
            if service is None:
                self._items.clear()
            else:
                kept = [r for r in self._items if r.get('serviceName') != service]
                self._items.clear()
                self._items.extend(kept)
            return before - len(self._items)

    def __len__(self) -> int:
        return len(self._items)
