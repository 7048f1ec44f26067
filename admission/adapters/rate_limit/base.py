"""Rate limit store interfaces.

The limiter depends on this abstraction (not the concrete implementation)
so storage backends can be swapped later (e.g., Redis) with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitRecord:
    """Counter for one key within one fixed window.

    Attributes:
        key: Namespaced limiter key (route and identity).
        count: Requests seen in the window, including rejected ones.
        window_start: UNIX epoch milliseconds of the first request in the window.
        window_ms: Window length in milliseconds.
        max: Allowed requests per window.
    """

    key: str
    count: int
    window_start: int
    window_ms: int
    max: int

    @property
    def reset_at(self) -> int:
        return self.window_start + self.window_ms

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.reset_at


class AbstractRateLimitStore(ABC):
    """Key/value store with read, put and conditional increment semantics."""

    @abstractmethod
    def get(self, key: str) -> RateLimitRecord | None:
        """Return the stored record for ``key`` (expired or not), if any."""
        raise NotImplementedError

    @abstractmethod
    def put(self, record: RateLimitRecord) -> None:
        """Create or replace the record for ``record.key``."""
        raise NotImplementedError

    @abstractmethod
    def increment(self, key: str, window_start: int) -> RateLimitRecord | None:
        """Increment the count only if the stored window still starts at ``window_start``.

        Returns:
            The updated record, or None when the record is gone or was
            replaced by a newer window.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the record for ``key`` if present."""
        raise NotImplementedError

    @abstractmethod
    def sweep(self, cutoff_ms: int) -> int:
        """Remove records whose reset_at is at or before ``cutoff_ms``.

        Returns:
            Number of records removed.
        """
        raise NotImplementedError

    @abstractmethod
    def records(self) -> list[RateLimitRecord]:
        """Snapshot of all stored records."""
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        """Remove every record."""
        raise NotImplementedError
