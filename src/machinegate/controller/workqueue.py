# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/machinegate/controller/workqueue.py
from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Hashable, List, Optional, Set, Tuple


class WorkQueue:
    """
    Deduplicating, delaying, rate-limited work queue.

    A key is handed to at most one worker at a time. Adding a key that is
    already queued is a no-op; adding a key that is being processed marks it
    dirty and it is queued again once done() is called for it.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        base_delay: float = 0.005,
        max_delay: float = 1000.0,
    ):
        self.clock = clock
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._cond = threading.Condition()
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._delayed: List[Tuple[float, int, Hashable]] = []
        self._waiting: Dict[Hashable, float] = {}
        self._failures: Dict[Hashable, int] = {}
        self._seq = itertools.count()
        self._shutting_down = False

    # -------------------------------------------------------------------------
    # Adding
    # -------------------------------------------------------------------------

    def add(self, key: Hashable) -> None:
        with self._cond:
            self._add(key)

    def _add(self, key: Hashable) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add_after(self, key: Hashable, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            due = self.clock() + delay
            current = self._waiting.get(key)
            if current is not None and current <= due:
                return
            self._waiting[key] = due
            heapq.heappush(self._delayed, (due, next(self._seq), key))
            self._cond.notify()

    def add_rate_limited(self, key: Hashable) -> float:
        """Queue *key* after its exponential backoff; returns the delay used."""
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        delay = min(self.base_delay * (2 ** failures), self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    # -------------------------------------------------------------------------
    # Consuming
    # -------------------------------------------------------------------------

    def _promote(self) -> Optional[float]:
        """Move due delayed keys onto the queue; returns seconds until the next one."""
        now = self.clock()
        while self._delayed:
            due, _, key = self._delayed[0]
            if self._waiting.get(key) != due:
                heapq.heappop(self._delayed)  # superseded by an earlier entry
                continue
            if due > now:
                return due - now
            heapq.heappop(self._delayed)
            del self._waiting[key]
            self._add(key)
        return None

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """
        Next key to process, or None on shutdown or when *timeout* expires.
        timeout=0 polls without blocking.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                next_due = self._promote()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutting_down:
                    return None

                wait = next_due
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: Hashable) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def depth(self) -> int:
        """Keys ready to be handed out."""
        with self._cond:
            return len(self._queue)

    def delayed(self) -> Dict[Hashable, float]:
        """Keys waiting in the delay heap mapped to seconds until due."""
        with self._cond:
            now = self.clock()
            return {key: due - now for key, due in self._waiting.items()}
