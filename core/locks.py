"""
In-process mutual exclusion for inventory rows.

Quantity updates on an item are serialized by holding the item's lock while
the row is re-read with select_for_update() and written back. Keys map onto
a fixed set of re-entrant stripes, so memory stays bounded no matter how many
items exist. Multi-item callers acquire stripes in ascending index order,
which makes lock order deterministic across threads.
"""
import threading
import zlib
from contextlib import contextmanager


class ItemLockRegistry:
    """
    Striped lock registry keyed by item id.

    One instance is created per process (see core.apps.CoreConfig) and
    injected into the services that mutate stock.
    """

    def __init__(self, stripes: int = 256):
        if stripes < 1:
            raise ValueError("stripes must be a positive integer")
        self._locks = [threading.RLock() for _ in range(stripes)]

    def _index(self, key) -> int:
        return zlib.crc32(str(key).encode('utf-8')) % len(self._locks)

    def stripes_for(self, *keys):
        """Distinct stripe indexes for keys, in acquisition order."""
        return sorted({self._index(key) for key in keys})

    @contextmanager
    def acquire(self, *keys):
        """
        Hold the locks of every key for the duration of the block.

        Must be entered before opening the database transaction that
        touches the rows.
        """
        acquired = []
        try:
            for index in self.stripes_for(*keys):
                lock = self._locks[index]
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
