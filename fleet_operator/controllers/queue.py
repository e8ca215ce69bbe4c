"""
Work Queue

Per-key de-duplicating queue feeding reconciliation passes. A key is queued
at most once; a fresh event for a key supersedes a retry scheduled for it.
"""

import heapq
import itertools
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Hashable, List, Optional, Tuple

from .status import ReconcileOutcome

logger = logging.getLogger(__name__)


class WorkQueue:
    """
    Ready keys are handed out first-in first-out. Delayed keys become ready
    once their deadline has passed.

    Args:
        clock: Monotonic time source, injectable for tests
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._ready: "OrderedDict[Hashable, None]" = OrderedDict()
        self._deadlines: Dict[Hashable, float] = {}
        self._heap: List[Tuple[float, int, Hashable]] = []
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._ready) + len(self._deadlines)

    def add(self, key: Hashable) -> None:
        """Queue ``key`` now, replacing any pending delayed retry"""
        with self._lock:
            if self._deadlines.pop(key, None) is not None:
                logger.debug(f"Event for {key} supersedes its scheduled retry")
            self._ready[key] = None

    def add_after(self, key: Hashable, delay: float) -> None:
        """Queue ``key`` after ``delay`` seconds unless it is already due sooner"""
        with self._lock:
            if key in self._ready:
                return
            deadline = self.clock() + max(delay, 0.0)
            current = self._deadlines.get(key)
            if current is not None and current <= deadline:
                return
            self._deadlines[key] = deadline
            heapq.heappush(self._heap, (deadline, next(self._sequence), key))

    def _promote_due(self) -> None:
        now = self.clock()
        while self._heap and self._heap[0][0] <= now:
            deadline, _, key = heapq.heappop(self._heap)
            # Stale heap entries belong to superseded or rescheduled retries
            if self._deadlines.get(key) != deadline:
                continue
            del self._deadlines[key]
            self._ready[key] = None

    def get(self) -> Optional[Hashable]:
        """Next ready key, or None when nothing is due"""
        with self._lock:
            self._promote_due()
            if not self._ready:
                return None
            key, _ = self._ready.popitem(last=False)
            return key

    def next_deadline(self) -> Optional[float]:
        with self._lock:
            if self._ready:
                return self.clock()
            return min(self._deadlines.values()) if self._deadlines else None

    def process_next(self, reconcile: Callable[[Hashable], ReconcileOutcome]) -> Optional[ReconcileOutcome]:
        """
        Run one pass for the next ready key and schedule its retry if asked.

        Returns:
            The pass outcome, or None when no key was due
        """
        key = self.get()
        if key is None:
            return None
        outcome = reconcile(key)
        if outcome.requeue:
            logger.debug(f"Retrying {key} in {outcome.delay}s: {outcome.reason}")
            self.add_after(key, outcome.delay)
        return outcome
