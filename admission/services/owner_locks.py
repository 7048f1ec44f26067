"""Owner-scoped mutual exclusion.

One ``threading.Lock`` per owner, created on demand and dropped when no
caller holds or waits for it, so the registry does not grow with the number
of owners ever seen.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from admission.core.errors import store_unavailable


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class OwnerLocks:
    """Registry of per-owner locks with bounded acquisition time."""

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._timeout = timeout_seconds
        self._registry_lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._entries)

    @contextmanager
    def hold(self, owner: str) -> Iterator[None]:
        """Hold ``owner``'s lock for the duration of the block.

        Raises:
            StoreUnavailableError: If the lock could not be acquired in time.
        """
        with self._registry_lock:
            entry = self._entries.setdefault(owner, _Entry())
            entry.users += 1

        acquired = entry.lock.acquire(timeout=self._timeout)
        try:
            if not acquired:
                raise store_unavailable("owner_lock", f"timed out after {self._timeout}s waiting for owner lock")
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._registry_lock:
                entry.users -= 1
                if entry.users == 0:
                    self._entries.pop(owner, None)
