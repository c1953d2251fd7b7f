"""
Per-resource serialization for pick mutations.

Writers to the same pick (creator edits, admin overrides, grading) must not
interleave between reading the ledger head and appending the next entry.
Within one process this keyed lock serializes them; across processes the
row lock taken by PickRepository.get_for_update() and the unique
(resource_id, sequence) constraint on ledger_entries do the same job.

Locks for different picks never contend. A creator's shared aggregates row
is guarded by the key from creator_lock_key(); writers that need both take
the pick lock first.
"""
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Iterator


class ResourceLocks:
    """Keyed re-entrant locks with reference counting so idle keys are dropped."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._holders: Dict[str, int] = defaultdict(int)

    @contextmanager
    def hold(self, resource_id: str) -> Iterator[None]:
        """Hold the lock for resource_id for the duration of the block."""
        with self._guard:
            lock = self._locks.setdefault(resource_id, threading.RLock())
            self._holders[resource_id] += 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._holders[resource_id] -= 1
                if self._holders[resource_id] == 0:
                    del self._holders[resource_id]
                    self._locks.pop(resource_id, None)

    def active_keys(self) -> int:
        """Number of resources currently held or waited on."""
        with self._guard:
            return len(self._locks)


def creator_lock_key(creator_id: str) -> str:
    return f"creator:{creator_id}"


# Process-wide instance shared by every service
resource_locks = ResourceLocks()
