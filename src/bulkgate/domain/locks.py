"""In-process advisory locks on natural keys."""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator

from bulkgate.domain import errors
from bulkgate.domain.errors import ConflictError

log = logging.getLogger(__name__)


class KeyLockRegistry:
    """Serialize batches that touch the same natural keys.

    Keys are acquired in sorted order so two batches sharing keys can never
    wait on each other in a cycle.
    """

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, keys: list[str], timeout: float = 5.0) -> Iterator[None]:
        """Hold locks on every key for the duration of the block.

        Args:
            keys: Namespaced natural keys, e.g. "organization:30712345678"
            timeout: Seconds to wait for all keys in total

        Raises:
            ConflictError: If some key is still held when the timeout expires
        """
        ordered = sorted(set(keys))
        deadline = time.monotonic() + timeout
        acquired: list[threading.Lock] = []
        try:
            for position, key in enumerate(ordered):
                lock = self._lock_for(key)
                if not lock.acquire(timeout=max(0.0, deadline - time.monotonic())):
                    blocked = ordered[position:]
                    raise ConflictError(errors.keys_locked(blocked), code="KEY_LOCKED", details={"keys": blocked})
                acquired.append(lock)
            log.debug("Holding %d key locks", len(acquired))
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def is_locked(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()
